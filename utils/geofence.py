# utils/geofence.py

from math import atan2, cos, radians, sin, sqrt
from typing import Iterable

EARTH_RADIUS_M = 6371000


def haversine_dist(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two lat/lng pairs, in meters."""
    φ1, φ2 = radians(lat1), radians(lat2)
    Δφ = radians(lat2 - lat1)
    Δλ = radians(lng2 - lng1)

    a = sin(Δφ/2)**2 + cos(φ1) * cos(φ2) * sin(Δλ/2)**2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_M * c


def is_within_radius(
    lat: float,
    lng: float,
    center_lat: float,
    center_lng: float,
    radius_m: float
) -> bool:
    if radius_m <= 0:
        return False
    return haversine_dist(lat, lng, center_lat, center_lng) <= radius_m


def _active(zones: Iterable) -> list:
    # Zones without an is_active attribute count as active
    return [zone for zone in zones if getattr(zone, "is_active", True)]


def is_within(point, zones: Iterable) -> bool:
    """
    True if the point lies inside ANY active zone.

    `point` needs `lat` / `lng`; each zone needs `center_lat`, `center_lng`
    and `radius_km`.
    """
    for zone in _active(zones):
        if is_within_radius(
            point.lat,
            point.lng,
            zone.center_lat,
            zone.center_lng,
            zone.radius_km * 1000,  # Zones are stored in kilometers
        ):
            return True
    return False


def nearest_distance_meters(point, zones: Iterable) -> float:
    """Distance to the closest active zone center; 0.0 when there are no zones."""
    distances = [
        haversine_dist(point.lat, point.lng, zone.center_lat, zone.center_lng)
        for zone in _active(zones)
    ]
    return min(distances) if distances else 0.0
