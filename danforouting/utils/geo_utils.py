import math
from datetime import datetime, timedelta
from typing import Optional, Tuple

import numpy as np
from shapely.geometry import LineString, Point

from ..models.locations import Coordinate

EARTH_RADIUS_M = 6371000
ARRIVAL_RADIUS_M = 50
APPROACH_RADIUS_M = 300
NEAR_LINE_DETOUR_FACTOR = 1.2


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate haversine distance between two points in kilometers"""
    R = 6371  # Earth's radius in kilometers
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad
    a = (math.sin(dlat/2)**2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon/2)**2)
    c = 2 * math.asin(math.sqrt(a))
    return R * c


def vectorized_haversine(lat1, lon1, lat2, lon2):
    """Vectorized haversine distance calculation using numpy, in meters"""
    lat1, lon1, lat2, lon2 = map(np.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = np.sin(dlat/2)**2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon/2)**2
    c = 2 * np.arcsin(np.sqrt(a))

    return EARTH_RADIUS_M * c


def distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters"""
    return haversine_distance(a.lat, a.lon, b.lat, b.lon) * 1000


def bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """Return (min_lat, max_lat, min_lon, max_lon) around ``center``.

    Exact bounds of the spherical cap of ``radius_km``: a degree of
    longitude shrinks with cos(lat), so the box widens east to west away
    from the equator. Callers refine with an exact distance check.
    """
    angular = radius_km * 1000 / EARTH_RADIUS_M
    lat_delta = math.degrees(angular)
    cos_lat = max(math.cos(math.radians(center.lat)), 1e-6)
    lon_delta = math.degrees(math.asin(min(1.0, math.sin(angular) / cos_lat)))
    return (center.lat - lat_delta, center.lat + lat_delta,
            center.lon - lon_delta, center.lon + lon_delta)


def is_point_near_segment(point: Coordinate, start: Coordinate, end: Coordinate,
                          tolerance_km: float) -> bool:
    """True when ``point`` lies roughly on the way from ``start`` to ``end``.

    The detour through the point must not exceed the segment length by more
    than 20%, and the point must be within ``tolerance_km`` of one endpoint.
    """
    d_start = distance(point, start) / 1000
    d_end = distance(point, end) / 1000
    length = distance(start, end) / 1000
    return (d_start + d_end <= length * NEAR_LINE_DETOUR_FACTOR
            and min(d_start, d_end) <= tolerance_km)


def project_point_onto_segment(point: Coordinate, start: Coordinate, end: Coordinate) -> Coordinate:
    """Closest point to ``point`` on the straight segment start-end.

    Planar projection in lon/lat space, clamped to the segment. A
    degenerate segment projects everything onto ``start``.
    """
    if start.as_tuple() == end.as_tuple():
        return start
    line = LineString([(start.lon, start.lat), (end.lon, end.lat)])
    projected = line.interpolate(line.project(Point(point.lon, point.lat)))
    return Coordinate(projected.y, projected.x)


def has_arrived(current: Coordinate, target: Coordinate, radius_m: float = ARRIVAL_RADIUS_M) -> bool:
    return distance(current, target) <= radius_m


def is_approaching(current: Coordinate, target: Coordinate, radius_m: float = APPROACH_RADIUS_M,
                   arrival_radius_m: float = ARRIVAL_RADIUS_M) -> bool:
    """Inside the approach radius but not yet arrived"""
    d = distance(current, target)
    return arrival_radius_m < d <= radius_m


def estimate_eta(current: Coordinate, target: Coordinate, avg_speed_kmh: float = 30,
                 now: Optional[datetime] = None) -> datetime:
    """Straight-line ETA at a constant average speed"""
    if avg_speed_kmh <= 0:
        raise ValueError("Average speed must be positive")
    now = now or datetime.now()
    hours = (distance(current, target) / 1000) / avg_speed_kmh
    return now + timedelta(hours=hours)


def travel_minutes(distance_km: float, speed_kmh: float) -> float:
    return distance_km / speed_kmh * 60
