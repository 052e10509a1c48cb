"""Common utility functions."""

from .geo import distance_km, EARTH_RADIUS_KM, MISSING_DISTANCE_KM

__all__ = [
    "distance_km",
    "EARTH_RADIUS_KM",
    "MISSING_DISTANCE_KM",
]
