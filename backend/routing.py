"""Street routing via the OSRM public HTTP API (driving profile)."""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx

import config
from errors import ProviderError, RouteError
from models import Coordinate, RouteFragment
from transport import request_json

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_distance(meters: float) -> str:
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    # Half-up like the JS Math.round the labels were first produced with.
    return f"{math.floor(seconds / 60 + 0.5)} min"


def parse_route(data: dict, now: datetime) -> RouteFragment:
    """Turn an OSRM /route response into a RouteFragment.

    OSRM geometry is GeoJSON ([lng, lat] pairs), origin first. Order is kept.
    """
    if not isinstance(data, dict) or data.get("code", "Ok") != "Ok":
        raise RouteError(f"No route: {data.get('code') if isinstance(data, dict) else data!r}")
    routes = data.get("routes") or []
    if not routes:
        raise RouteError("No route between origin and destination")

    route = routes[0]
    try:
        coords = route["geometry"]["coordinates"]
        geometry = [Coordinate(lat=float(lat), lng=float(lng)) for lng, lat, *_ in coords]
        distance = float(route["distance"])
        duration = float(route["duration"])
    except (KeyError, TypeError, ValueError) as exc:
        raise RouteError(f"Malformed route response: {exc}") from exc

    return RouteFragment(
        geometry=geometry,
        distance_m=distance,
        duration_s=duration,
        distance_text=format_distance(distance),
        duration_text=format_duration(duration),
        estimated_arrival=now + timedelta(seconds=duration),
    )


class RouteClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = config.OSRM_BASE_URL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.clock = clock

    async def route(self, origin: Coordinate, destination: Coordinate) -> RouteFragment:
        url = (
            f"{self.base_url}/route/v1/driving/"
            f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        )
        try:
            data = await request_json(
                self.client, "GET", url, params={"overview": "full", "geometries": "geojson"},
            )
        except ProviderError as exc:
            # OSRM answers 400 with code=NoRoute for unroutable pairs
            raise RouteError(str(exc)) from exc

        # Arrival is fixed at response time, not recomputed on display.
        fragment = parse_route(data, self.clock())
        logger.info(
            "Route (%.5f, %.5f) -> (%.5f, %.5f): %s, %s",
            origin.lat, origin.lng, destination.lat, destination.lng,
            fragment.distance_text, fragment.duration_text,
        )
        return fragment
