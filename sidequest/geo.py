import logging
import math
from typing import Sequence

import numpy as np
from sklearn.metrics.pairwise import haversine_distances

from . import config
from .pydantic_models import Coordinates

logger = logging.getLogger(__name__)


def _to_radians(points: Sequence[Coordinates]) -> np.ndarray:
    return np.radians(np.array([[p.lat, p.lng] for p in points], dtype=float))


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometres."""
    return float(distance_matrix_km([a], [b])[0, 0])


def haversine_m(a: Coordinates, b: Coordinates) -> float:
    return haversine_km(a, b) * 1000.0


def distance_matrix_km(origins: Sequence[Coordinates], destinations: Sequence[Coordinates]) -> np.ndarray:
    """
    Pairwise great-circle distances.

    Args:
        origins: N coordinates
        destinations: M coordinates

    Returns:
        np.ndarray: N x M matrix of kilometres
    """
    if not origins or not destinations:
        return np.zeros((len(origins), len(destinations)))
    radians = haversine_distances(_to_radians(origins), _to_radians(destinations))
    return radians * config.EARTH_RADIUS_KM


def destination_point(origin: Coordinates, bearing_degrees: float, distance_km: float) -> Coordinates:
    """Point reached travelling `distance_km` from `origin` on the given initial bearing."""
    angular = distance_km / config.EARTH_RADIUS_KM
    bearing = math.radians(bearing_degrees)
    lat1 = math.radians(origin.lat)
    lng1 = math.radians(origin.lng)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(angular)
        + math.cos(lat1) * math.sin(angular) * math.cos(bearing)
    )
    lng2 = lng1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )
    # Normalise longitude to [-180, 180)
    lng2 = (lng2 + 3 * math.pi) % (2 * math.pi) - math.pi
    return Coordinates(lat=math.degrees(lat2), lng=math.degrees(lng2))
