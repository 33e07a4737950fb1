"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

from shapely.geometry import LineString, Point

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Return True for finite coordinates inside the WGS84 range."""

    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def nearest_point_on_path(lat: float, lon: float, path: Sequence[tuple[float, float]]) -> tuple[float, float]:
    """Project a point onto a (lat, lon) polyline in the planar lat/lon space.

    The projection is clamped to the path, so points beyond an end snap to
    that end. A path whose points all coincide degenerates to that point.
    """
    if not path:
        raise ValueError("Path requires at least one point.")

    line_coords = [(p_lon, p_lat) for p_lat, p_lon in path]
    distinct = {coord for coord in line_coords}
    if len(distinct) == 1:
        only_lon, only_lat = line_coords[0]
        return only_lat, only_lon

    line = LineString(line_coords)
    snapped = line.interpolate(line.project(Point(lon, lat)))
    return snapped.y, snapped.x


def distance_to_path_m(lat: float, lon: float, path: Sequence[tuple[float, float]]) -> float:
    """Great-circle distance in metres from a point to its projection on the path."""

    near_lat, near_lon = nearest_point_on_path(lat, lon, path)
    return haversine_m(lat, lon, near_lat, near_lon)


def euclidean_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Flat lat/lon distance; only suitable for ranking nearby points."""

    return math.hypot(lat1 - lat2, lon1 - lon2)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round half away from zero; ``round()`` would round 2.5 to 2."""
    factor = 10 ** digits
    return math.floor(abs(value) * factor + 0.5) / factor * (1 if value >= 0 else -1)
