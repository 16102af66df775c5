"""Tests for FastAPI endpoints."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from cache import GeoCache
from errors import RouteError
from fakes import FakeClock, FakeDiscovery, FakeHistory, FakeRouter, RecordingAnnouncer, bundle
from main import app, get_announcements, get_cache, get_session
from models import Coordinate
from session import NavigationSession
from speech import AnnouncementFeed
from tracker import TrackRecorder

client = TestClient(app)

state = {}


def setup_function():
    """Fresh session with fake collaborators before each test."""
    clock = FakeClock()
    discovery = FakeDiscovery()
    discovery.places["Springfield"] = Coordinate(lat=10.0, lng=20.0)
    discovery.bundles["Springfield"] = bundle("Springfield", bars=2, districts=1)
    router = FakeRouter(clock)
    session = NavigationSession(
        discovery=discovery,
        router=router,
        announcer=RecordingAnnouncer(),
        recorder=TrackRecorder(min_displacement_m=5, clock=clock),
        history=FakeHistory(),
        clock=clock,
    )
    state.update(session=session, router=router, feed=AnnouncementFeed(), cache=GeoCache())
    app.dependency_overrides[get_session] = lambda: state["session"]
    app.dependency_overrides[get_announcements] = lambda: state["feed"]
    app.dependency_overrides[get_cache] = lambda: state["cache"]


def teardown_function():
    app.dependency_overrides.clear()
    state.clear()


def _search():
    resp = client.post("/search", json={"query": "Springfield"})
    assert resp.status_code == 200
    return resp.json()


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "cache": {"entries": 0, "hits": 0, "misses": 0}}


def test_health_reports_cache_usage():
    state["cache"].put("geocode:springfield", "x")
    state["cache"].misses = 1
    resp = client.get("/health")
    assert resp.json()["cache"] == {"entries": 1, "hits": 0, "misses": 1}


def test_config():
    resp = client.get("/config")
    assert resp.status_code == 200
    data = resp.json()
    assert data["cache_precision"] == 4
    assert "arrival_radius_m" in data


def test_session_starts_idle():
    resp = client.get("/session")
    assert resp.status_code == 200
    data = resp.json()
    assert data["phase"] == "idle"
    assert data["points_of_interest"] == []
    assert data["loading"] is False


def test_search_loads_targets():
    data = _search()
    assert data["applied"] is True
    session = data["session"]
    assert session["city_label"] == "Springfield"
    assert len(session["points_of_interest"]) == 2
    assert all(p["status"] == "pending" for p in session["points_of_interest"])
    assert session["districts"][0]["covered"] is False


def test_search_unknown_place_is_404():
    resp = client.post("/search", json={"query": "Atlantis"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "resolution_error"


def test_search_requires_query():
    resp = client.post("/search", json={"query": ""})
    assert resp.status_code == 422


def test_suggestions():
    resp = client.get("/suggestions", params={"q": "spring"})
    assert resp.status_code == 200
    assert resp.json() == {"suggestions": ["Spring City"]}


def test_route_without_location_only_focuses():
    target = _search()["session"]["districts"][0]
    resp = client.post(f"/targets/{target['id']}/route")
    assert resp.status_code == 200
    data = resp.json()
    assert data["route"] is None
    assert data["session"]["map_focus"] == target["coordinate"]


def test_route_to_target():
    target = _search()["session"]["points_of_interest"][0]
    client.post("/location", json={"lat": 10.0, "lng": 20.0})
    resp = client.post(f"/targets/{target['id']}/route")
    assert resp.status_code == 200
    route = resp.json()["route"]
    assert route["target_id"] == target["id"]
    assert route["distance_text"] == "1.2 km"
    assert route["duration_text"] == "5 min"
    assert resp.json()["session"]["phase"] == "previewing"

    resp = client.delete("/route")
    assert resp.json()["cleared"] is True
    assert resp.json()["session"]["phase"] == "cancelled"


def test_route_failure_is_502():
    target = _search()["session"]["points_of_interest"][0]
    client.post("/location", json={"lat": 10.0, "lng": 20.0})
    state["router"].failure = RouteError("no path")
    resp = client.post(f"/targets/{target['id']}/route")
    assert resp.status_code == 502
    assert resp.json()["error"] == "route_error"


def test_route_unknown_target_is_404():
    resp = client.post("/targets/nope/route")
    assert resp.status_code == 404
    assert resp.json()["error"] == "unknown_target"


def test_point_status():
    poi = _search()["session"]["points_of_interest"][0]
    resp = client.post(f"/pois/{poi['id']}/status", json={"status": "success"})
    assert resp.status_code == 200
    assert resp.json()["updated"] is True
    statuses = {p["id"]: p["status"] for p in resp.json()["session"]["points_of_interest"]}
    assert statuses[poi["id"]] == "success"


def test_point_status_unknown_id_is_not_an_error():
    resp = client.post("/pois/missing/status", json={"status": "failure"})
    assert resp.status_code == 200
    assert resp.json()["updated"] is False


def test_point_status_cannot_reset_to_pending():
    resp = client.post("/pois/any/status", json={"status": "pending"})
    assert resp.status_code == 422


def test_tracking_and_history():
    resp = client.post("/tracking/start")
    assert resp.json()["tracking_enabled"] is True
    client.post("/location", json={"lat": 10.0, "lng": 20.0})
    client.post("/location", json={"lat": 10.001, "lng": 20.0})
    resp = client.post("/tracking/stop")
    data = resp.json()
    assert data["tracking_enabled"] is False
    assert len(data["track"]) == 2

    resp = client.get("/history")
    assert resp.json()["count"] == 1


def test_locate_with_position():
    state["session"].discovery.bundles["Current location"] = bundle("Springfield")
    resp = client.post("/locate", json={"lat": 10.0, "lng": 20.0})
    assert resp.status_code == 200
    assert resp.json()["applied"] is True
    assert resp.json()["session"]["current_location"] == {"lat": 10.0, "lng": 20.0}


def test_locate_without_source_declines():
    resp = client.post("/locate")
    assert resp.status_code == 200
    assert resp.json()["applied"] is False
    assert resp.json()["session"]["location_available"] is False


def test_reset():
    _search()
    resp = client.post("/reset")
    assert resp.status_code == 200
    assert resp.json()["points_of_interest"] == []


def test_announcements_feed():
    resp = client.get("/announcements")
    assert resp.status_code == 200
    assert resp.json() == {"announcements": []}
