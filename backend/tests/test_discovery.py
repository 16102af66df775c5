"""Tests for discovery payload parsing and the cached discovery client."""

import asyncio
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from cache import GeoCache
from discovery import DiscoveryClient, parse_discovery, parse_geocode, parse_suggestions
from errors import DiscoveryError, ProviderError, ResolutionError
from models import Category, Coordinate


class CountingContent:
    """Content service returning canned JSON text, counting calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.gate: asyncio.Event | None = None

    async def generate_json_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses[min(len(self.prompts), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


SPRINGFIELD = json.dumps({
    "cityName": "Springfield",
    "cityPopulation": "30,720",
    "bars": [{"name": "Joe's", "lat": 10.001, "lng": 20.001, "address": "Main St"}],
    "districts": [{"name": "Downtown", "lat": 10.0, "lng": 20.0, "description": "Center", "population": 5000}],
})


# ---- parsing ----

def test_parse_geocode():
    assert parse_geocode('{"lat": 10, "lng": 20}') == Coordinate(lat=10, lng=20)


def test_parse_geocode_accepts_zero_and_numeric_strings():
    assert parse_geocode('{"lat": 0, "lng": "-46.6"}') == Coordinate(lat=0.0, lng=-46.6)


@pytest.mark.parametrize("text", ["{}", '{"lat": 10}', '{"lat": null, "lng": 2}', "[]", "not json", ""])
def test_parse_geocode_without_coordinate_fails(text):
    with pytest.raises(ResolutionError):
        parse_geocode(text)


def test_parse_discovery_full_payload():
    result = parse_discovery(SPRINGFIELD)
    assert result.city_name == "Springfield"
    assert result.city_population == "30,720"
    assert len(result.businesses) == 1
    bar = result.businesses[0]
    assert bar.name == "Joe's"
    assert bar.category == Category.BAR
    assert bar.address == "Main St"
    assert bar.coordinate == Coordinate(lat=10.001, lng=20.001)
    district = result.districts[0]
    assert district.population == "5000"
    assert district.description == "Center"


def test_parse_discovery_degrades_missing_collections():
    result = parse_discovery('{"cityName": "Nowhere", "bars": "n/a"}')
    assert result.city_name == "Nowhere"
    assert result.businesses == []
    assert result.districts == []


def test_parse_discovery_drops_malformed_entries():
    payload = json.dumps({
        "bars": [
            {"name": "Good", "lat": 1, "lng": 2},
            {"name": "No coords"},
            {"lat": 1, "lng": 2},
            "junk",
            {"name": "Salon", "lat": 1, "lng": 2, "type": "salon"},
        ],
        "districts": [{"name": "Bad", "lat": "x", "lng": 2}],
    })
    result = parse_discovery(payload)
    assert [b.name for b in result.businesses] == ["Good", "Salon"]
    assert result.businesses[1].category == Category.SALON
    assert result.districts == []


@pytest.mark.parametrize("text", ["{broken", "[1, 2]", '"text"'])
def test_parse_discovery_unreadable_payload(text):
    with pytest.raises(DiscoveryError):
        parse_discovery(text)


def test_parse_suggestions_limits_and_filters():
    text = json.dumps({"suggestions": ["A", "", None, "B", "C"]})
    assert parse_suggestions(text, 2) == ["A", "B"]
    assert parse_suggestions("nope", 5) == []


# ---- client ----

@pytest.mark.asyncio
async def test_resolve_place_is_cached_by_normalized_query():
    content = CountingContent('{"lat": 10, "lng": 20}')
    client = DiscoveryClient(content, GeoCache())
    assert await client.resolve_place("Springfield") == Coordinate(lat=10, lng=20)
    assert await client.resolve_place("  springfield ") == Coordinate(lat=10, lng=20)
    assert len(content.prompts) == 1


@pytest.mark.asyncio
async def test_resolve_place_no_match_vs_provider_error():
    client = DiscoveryClient(CountingContent("{}"), GeoCache())
    with pytest.raises(ResolutionError):
        await client.resolve_place("Atlantis")

    client = DiscoveryClient(CountingContent(ProviderError("HTTP 503")), GeoCache())
    with pytest.raises(ProviderError):
        await client.resolve_place("Atlantis")


@pytest.mark.asyncio
async def test_resolve_place_failure_is_retried_next_time():
    content = CountingContent("{}", '{"lat": 1, "lng": 2}')
    client = DiscoveryClient(content, GeoCache())
    with pytest.raises(ResolutionError):
        await client.resolve_place("Somewhere")
    assert await client.resolve_place("Somewhere") == Coordinate(lat=1, lng=2)
    assert len(content.prompts) == 2


@pytest.mark.asyncio
async def test_discover_same_quantized_key_calls_once():
    content = CountingContent(SPRINGFIELD)
    client = DiscoveryClient(content, GeoCache(precision=4))
    first = await client.discover(Coordinate(lat=10.00001, lng=20.00001), "Springfield")
    second = await client.discover(Coordinate(lat=10.00004, lng=19.99996), "Springfield")
    assert first is second
    assert len(content.prompts) == 1


@pytest.mark.asyncio
async def test_discover_distinct_keys_call_twice():
    content = CountingContent(SPRINGFIELD)
    client = DiscoveryClient(content, GeoCache(precision=4))
    await client.discover(Coordinate(lat=10.0, lng=20.0), "A")
    await client.discover(Coordinate(lat=10.001, lng=20.0), "B")
    assert len(content.prompts) == 2


@pytest.mark.asyncio
async def test_discover_empty_result_not_cached():
    content = CountingContent("{}", SPRINGFIELD)
    client = DiscoveryClient(content, GeoCache())
    empty = await client.discover(Coordinate(lat=10.0, lng=20.0), "Springfield")
    assert empty.is_empty()
    full = await client.discover(Coordinate(lat=10.0, lng=20.0), "Springfield")
    assert full.city_name == "Springfield"
    assert len(content.prompts) == 2


@pytest.mark.asyncio
async def test_discover_concurrent_calls_are_deduplicated():
    content = CountingContent(SPRINGFIELD)
    content.gate = asyncio.Event()
    client = DiscoveryClient(content, GeoCache())
    where = Coordinate(lat=10.0, lng=20.0)
    tasks = [asyncio.create_task(client.discover(where, "Springfield")) for _ in range(3)]
    await asyncio.sleep(0)
    content.gate.set()
    results = await asyncio.gather(*tasks)
    assert all(r.city_name == "Springfield" for r in results)
    assert len(content.prompts) == 1


@pytest.mark.asyncio
async def test_suggest_requires_min_chars_and_never_raises():
    content = CountingContent('{"suggestions": ["Springfield", "Springdale"]}')
    client = DiscoveryClient(content, GeoCache(), suggestion_min_chars=3)
    assert await client.suggest("Sp") == []
    assert content.prompts == []
    assert await client.suggest("Spr") == ["Springfield", "Springdale"]

    failing = DiscoveryClient(CountingContent(ProviderError("down")), GeoCache())
    assert await failing.suggest("Springfield") == []
