"""Discovery client: place query -> coordinate, coordinate -> POIs and districts.

Backed by the AI content service. Every lookup goes through the GeoCache
first; only successful, non-empty results are stored. Provider payloads are
parsed leniently: a malformed entry is dropped, a missing collection is
empty, and only an unreadable document is an error.
"""

import json
import logging
import math
from typing import Protocol

import config
from cache import GeoCache
from errors import DiscoveryError, ResolutionError
from models import Category, Coordinate, DiscoveryBundle, DistrictSeed, PoiSeed

logger = logging.getLogger(__name__)

GEOCODE_PROMPT = 'Latitude/longitude of: {query}. JSON: {{"lat": v, "lng": v}}'

DISCOVER_PROMPT = (
    "Analyse the area around [{lat}, {lng}] ({label}). Return JSON: "
    '{{ "cityName": "Name", "cityPopulation": "X", '
    '"bars": [{{"name": "X", "lat": v, "lng": v, "address": "X"}}], '
    '"districts": [{{"name": "X", "lat": v, "lng": v, "description": "X", "population": "X"}}] }} '
    "At least 15 bars."
)

SUGGEST_PROMPT = 'Suggest {limit} city names starting with: "{query}". JSON: {{"suggestions": ["Name"]}}'


class ContentService(Protocol):
    async def generate_json_text(self, prompt: str) -> str: ...


# ---------- payload parsing ----------

def _number(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _text(value) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _coordinate(item: dict) -> Coordinate | None:
    lat, lng = _number(item.get("lat")), _number(item.get("lng"))
    if lat is None or lng is None:
        return None
    return Coordinate(lat=lat, lng=lng)


def _category(item: dict) -> Category:
    raw = item.get("category", item.get("type"))
    try:
        return Category(str(raw).lower())
    except ValueError:
        return Category.BAR


def _parse_business(item) -> PoiSeed | None:
    if not isinstance(item, dict):
        return None
    name, coordinate = _text(item.get("name")), _coordinate(item)
    if not name or coordinate is None:
        return None
    return PoiSeed(name=name, coordinate=coordinate, category=_category(item), address=_text(item.get("address")))


def _parse_district(item) -> DistrictSeed | None:
    if not isinstance(item, dict):
        return None
    name, coordinate = _text(item.get("name")), _coordinate(item)
    if not name or coordinate is None:
        return None
    return DistrictSeed(
        name=name,
        coordinate=coordinate,
        description=_text(item.get("description")),
        population=_text(item.get("population")),
    )


def _entries(payload: dict, field: str) -> list:
    value = payload.get(field)
    return value if isinstance(value, list) else []


def parse_geocode(text: str) -> Coordinate:
    try:
        payload = json.loads(text or "{}")
    except json.JSONDecodeError as exc:
        raise ResolutionError(f"Unreadable geocode payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise ResolutionError("Geocode payload is not an object")
    coordinate = _coordinate(payload)
    if coordinate is None:
        raise ResolutionError("No coordinate in geocode payload")
    return coordinate


def parse_discovery(text: str) -> DiscoveryBundle:
    try:
        payload = json.loads(text or "{}")
    except json.JSONDecodeError as exc:
        raise DiscoveryError(f"Unreadable discovery payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise DiscoveryError("Discovery payload is not an object")

    raw_bars = _entries(payload, "bars")
    raw_districts = _entries(payload, "districts")
    businesses = [b for b in map(_parse_business, raw_bars) if b is not None]
    districts = [d for d in map(_parse_district, raw_districts) if d is not None]
    dropped = len(raw_bars) + len(raw_districts) - len(businesses) - len(districts)
    if dropped:
        logger.warning("Dropped %d malformed discovery entries", dropped)

    return DiscoveryBundle(
        city_name=_text(payload.get("cityName")),
        city_population=_text(payload.get("cityPopulation")),
        businesses=businesses,
        districts=districts,
    )


def parse_suggestions(text: str, limit: int) -> list[str]:
    try:
        payload = json.loads(text or "{}")
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, dict):
        return []
    names = [_text(s) for s in _entries(payload, "suggestions")]
    return [n for n in names if n][:limit]


# ---------- client ----------

class DiscoveryClient:
    def __init__(
        self,
        content: ContentService,
        cache: GeoCache,
        suggestion_min_chars: int = config.SUGGESTION_MIN_CHARS,
        suggestion_limit: int = config.SUGGESTION_LIMIT,
    ):
        self.content = content
        self.cache = cache
        self.suggestion_min_chars = suggestion_min_chars
        self.suggestion_limit = suggestion_limit

    async def resolve_place(self, query: str) -> Coordinate:
        """Resolve free text to a coordinate.

        Raises ResolutionError for "no match" and lets ProviderError through
        for a failed call, so callers can tell them apart.
        """
        query = query.strip()
        if not query:
            raise ResolutionError("Empty query")

        async def fetch() -> Coordinate:
            text = await self.content.generate_json_text(GEOCODE_PROMPT.format(query=query))
            return parse_geocode(text)

        coordinate = await self.cache.get_or_fetch(self.cache.query_key("geocode", query), fetch)
        logger.info("Resolved %r to (%.5f, %.5f)", query, coordinate.lat, coordinate.lng)
        return coordinate

    async def discover(self, coordinate: Coordinate, label: str) -> DiscoveryBundle:
        """Fetch points of interest and districts around a coordinate."""
        async def fetch() -> DiscoveryBundle:
            prompt = DISCOVER_PROMPT.format(lat=coordinate.lat, lng=coordinate.lng, label=label)
            return parse_discovery(await self.content.generate_json_text(prompt))

        key = self.cache.coordinate_key("discover", coordinate.lat, coordinate.lng)
        bundle = await self.cache.get_or_fetch(key, fetch, cacheable=lambda b: not b.is_empty())
        logger.info(
            "Discovery for %s: %d businesses, %d districts",
            label, len(bundle.businesses), len(bundle.districts),
        )
        return bundle

    async def suggest(self, query: str) -> list[str]:
        """Place-name suggestions for a partial query. Never raises."""
        query = query.strip()
        if len(query) < self.suggestion_min_chars:
            return []

        async def fetch() -> list[str]:
            prompt = SUGGEST_PROMPT.format(limit=self.suggestion_limit, query=query)
            return parse_suggestions(await self.content.generate_json_text(prompt), self.suggestion_limit)

        try:
            return await self.cache.get_or_fetch(self.cache.query_key("suggest", query), fetch, cacheable=bool)
        except Exception as exc:
            logger.error("Suggestion lookup failed for %r: %s", query, exc)
            return []
