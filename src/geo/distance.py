"""Centralized geographic primitives.

Haversine distances are in kilometers throughout the planner. Movement is a
straight line in degree space, which is accurate enough at the scale of a
city ride.
"""

from collections.abc import Sequence
from math import atan2, cos, radians, sin, sqrt

from trip import Location

EARTH_RADIUS_KM = 6371.0


def haversine_distance_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in kilometers.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance between the two points in kilometers
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance(a: Location, b: Location) -> float:
    """Haversine distance between two locations in kilometers."""
    return haversine_distance_km(a.lat, a.lng, b.lat, b.lng)


def interpolate(start: Location, end: Location, ratio: float) -> Location:
    """Linear interpolation between two locations, ratio 0 is start and 1 is end.

    The endpoints are returned as-is so paths are anchored exactly.
    """
    if ratio <= 0.0:
        return start
    if ratio >= 1.0:
        return end
    return Location(
        lat=start.lat + (end.lat - start.lat) * ratio,
        lng=start.lng + (end.lng - start.lng) * ratio,
    )


def step_toward(current: Location, target: Location, step_size_km: float) -> Location:
    """Move current up to step_size_km along the straight line to target.

    Snaps to target when the remaining distance does not exceed the step, so
    repeated calls never overshoot or oscillate around the target.
    """
    remaining_km = distance(current, target)
    if remaining_km <= step_size_km:
        return target
    return interpolate(current, target, step_size_km / remaining_km)


def centroid(points: Sequence[Location]) -> Location:
    """Arithmetic mean of latitudes and longitudes."""
    if not points:
        raise ValueError("Cannot compute the centroid of an empty point set")
    return Location(
        lat=sum(p.lat for p in points) / len(points),
        lng=sum(p.lng for p in points) / len(points),
    )


def path_length_km(path: Sequence[Location]) -> float:
    """Cumulative haversine length of a polyline, 0 for fewer than 2 points."""
    return sum(distance(path[i], path[i + 1]) for i in range(len(path) - 1))


def closest_index(path: Sequence[Location], position: Location) -> int:
    """Index of the sample nearest to position (linear scan, first minimum wins)."""
    best_index = 0
    best_distance = float("inf")
    for index, sample in enumerate(path):
        d = distance(position, sample)
        if d < best_distance:
            best_distance = d
            best_index = index
    return best_index
