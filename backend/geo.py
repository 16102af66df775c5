"""Geo math: distances, quantization and bearings on lat/lng pairs."""

import math

R = 6_378_137.0  # Earth radius in meters (WGS84)


def haversine(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in meters between two lat/lng points (haversine formula)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return 2 * R * math.asin(math.sqrt(a))


def quantize(lat: float, lng: float, precision: int) -> tuple[float, float]:
    """Round a coordinate to `precision` decimal places.

    Used to build cache keys so that near-identical lookups (re-centering,
    GPS jitter) land on the same entry. 4 places is roughly 11 m.
    """
    return round(lat, precision), round(lng, precision)


def heading(prev_lat: float, prev_lng: float, lat: float, lng: float) -> float:
    """Display heading in degrees from the previous position to the current one.

    atan2(dlng, dlat): 0 is north, 90 east, -90 west. Planar approximation,
    good enough for rotating a marker.
    """
    return math.degrees(math.atan2(lng - prev_lng, lat - prev_lat))


def path_length(points: list[tuple[float, float]]) -> float:
    """Total length in meters of a polyline given as (lat, lng) pairs."""
    total = 0.0
    for (lat1, lng1), (lat2, lng2) in zip(points, points[1:]):
        total += haversine(lat1, lng1, lat2, lng2)
    return total
