"""
Distance and travel-time utilities for dispatch.
"""

import logging
import math
from typing import Optional

from dispatch_backend.app.schemas.dispatch import GeoPoint

logger = logging.getLogger("dispatch.geo")

EARTH_RADIUS_KM = 6371.0
DEFAULT_AVERAGE_SPEED_KMH = 30.0  # Urban courier average


def is_valid_point(point: Optional[GeoPoint]) -> bool:
    """True when the point has finite coordinates inside WGS84 bounds."""
    if point is None:
        return False
    try:
        lat = float(point.lat)
        lng = float(point.lng)
    except (TypeError, ValueError, AttributeError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def distance_km(a: Optional[GeoPoint], b: Optional[GeoPoint]) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Malformed coordinates are a data-quality problem, not a caller error:
    they are logged and measured as 0 km.

    Returns:
        Distance in kilometers
    """
    if not (is_valid_point(a) and is_valid_point(b)):
        logger.warning(
            "Malformed coordinates, treating distance as 0",
            extra={"point_a": repr(a), "point_b": repr(b)},
        )
        return 0.0

    lat1_rad = math.radians(a.lat)
    lat2_rad = math.radians(b.lat)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(b.lng - a.lng)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def estimate_eta_minutes(distance: float, avg_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> int:
    """Whole minutes to cover `distance` km at a constant average speed."""
    return math.ceil(distance / avg_speed_kmh * 60)
