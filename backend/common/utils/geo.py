"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
"""

from math import radians, cos, sin, atan2, sqrt

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

# Returned when a coordinate is missing so the driver sorts last
MISSING_DISTANCE_KM = 99999.0


def distance_km(lat1, lon1, lat2, lon2) -> float:
    """
    Calculate distance between two points in kilometers using Haversine formula.

    Coordinates may be floats, Decimals or numeric strings. A ``None`` in
    any position yields ``MISSING_DISTANCE_KM`` instead of an error; zero is
    a real coordinate (equator / prime meridian) and is measured normally.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in kilometers
    """
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return MISSING_DISTANCE_KM

    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_KM * c
