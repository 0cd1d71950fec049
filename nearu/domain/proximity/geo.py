"""Great-circle distance and proximity checks on a spherical earth."""

from __future__ import annotations

import math

from nearu.domain.proximity.exceptions import InvalidLocation
from nearu.domain.proximity.models import Location

EARTH_RADIUS_M = 6_371_000


def validate_location(location: Location) -> Location:
    """Return ``location`` unchanged or raise ``InvalidLocation``."""
    lat = location.latitude
    lon = location.longitude
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidLocation("invalid_location:not_finite")
    if not -90.0 <= lat <= 90.0:
        raise InvalidLocation("invalid_location:latitude")
    if not -180.0 <= lon <= 180.0:
        raise InvalidLocation("invalid_location:longitude")
    return location


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance between two points in meters."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_meters(a: Location, b: Location) -> float:
    validate_location(a)
    validate_location(b)
    return haversine(a.latitude, a.longitude, b.latitude, b.longitude)


def is_within_proximity(a: Location, b: Location, max_distance_m: float) -> bool:
    if max_distance_m < 0:
        raise ValueError("max_distance_m must be >= 0")
    return distance_meters(a, b) <= max_distance_m
