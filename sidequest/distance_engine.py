import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import requests

from . import config
from .geo import haversine_km
from .pydantic_models import Coordinates, DistanceResult

logger = logging.getLogger(__name__)


def estimate_walking(origin: Coordinates, destination: Coordinates) -> DistanceResult:
    """
    Straight-line estimate used whenever the routing provider can't answer.
    Inflates the great-circle distance to account for streets not being straight.
    """
    distance_km = haversine_km(origin, destination) * config.ROUTE_INFLATION_FACTOR
    duration_minutes = round(distance_km / config.WALKING_SPEED_KMH * 60)
    return DistanceResult(
        distance_km=distance_km,
        duration_minutes=duration_minutes,
        distance_meters=distance_km * 1000,
        duration_seconds=duration_minutes * 60,
        is_estimate=True,
    )


def _format_point(point: Coordinates) -> str:
    return f"{point.lat},{point.lng}"


def _result_from_element(element) -> Optional[DistanceResult]:
    """Parses one Distance Matrix element, or None if it has no usable route."""
    if not isinstance(element, dict) or element.get('status') != 'OK':
        return None
    distance = element.get('distance') or {}
    duration = element.get('duration') or {}
    if not isinstance(distance, dict) or not isinstance(duration, dict):
        return None
    if 'value' not in distance or 'value' not in duration:
        return None
    try:
        meters = float(distance['value'])
        seconds = int(duration['value'])
    except (TypeError, ValueError):
        logger.warning(f"Distance Matrix element has unusable values: {element}")
        return None
    return DistanceResult(
        distance_km=meters / 1000,
        duration_minutes=round(seconds / 60),
        distance_meters=meters,
        duration_seconds=seconds,
        is_estimate=False,
    )


class DistanceEngine:
    """
    Walking distance and duration between coordinates.

    Every method is total: provider failures of any kind degrade to the
    geometric estimate instead of raising.
    """

    def __init__(self, api_key: Optional[str] = None, session=None,
                 timeout: Optional[float] = None, max_workers: Optional[int] = None):
        self.api_key = config.GOOGLE_MAPS_API_KEY if api_key is None else api_key
        self.session = session or requests
        self.timeout = timeout or config.MAPS_REQUEST_TIMEOUT_SECONDS
        self.max_workers = max_workers or config.DISTANCE_FANOUT_WORKERS

    def _fetch_matrix(self, origin: Coordinates, destinations: Sequence[Coordinates]):
        """Returns the elements row from the provider, or None on any failure."""
        if not self.api_key:
            logger.debug("No maps API key configured; using geometric distance estimate")
            return None
        params = {
            'origins': _format_point(origin),
            'destinations': '|'.join(_format_point(d) for d in destinations),
            'mode': 'walking',
            'key': self.api_key,
        }
        try:
            response = self.session.get(config.DISTANCE_MATRIX_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Distance Matrix request failed, falling back to estimate: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning("Distance Matrix returned a non-object body, falling back to estimate")
            return None
        if data.get('status') != 'OK':
            logger.warning(f"Distance Matrix returned status {data.get('status')}, falling back to estimate")
            return None
        rows = data.get('rows') or []
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return None
        elements = rows[0].get('elements') or []
        return elements if isinstance(elements, list) else None

    def measure(self, origin: Coordinates, destination: Coordinates) -> DistanceResult:
        return self.measure_many(origin, [destination])[0]

    def measure_many(self, origin: Coordinates, destinations: Sequence[Coordinates]) -> List[DistanceResult]:
        """
        Batch measurement from one origin. A failed element only affects its own slot.

        Args:
            origin: Start point
            destinations: Points to measure to

        Returns:
            List[DistanceResult]: One result per destination, in order
        """
        if not destinations:
            return []
        elements = self._fetch_matrix(origin, destinations)
        results = []
        for index, destination in enumerate(destinations):
            result = None
            if elements is not None and index < len(elements):
                result = _result_from_element(elements[index])
            if result is None:
                result = estimate_walking(origin, destination)
            results.append(result)
        return results

    def measure_legs(self, points: Sequence[Coordinates]) -> List[DistanceResult]:
        """Measures every consecutive leg of a route concurrently; results are in leg order."""
        legs = list(zip(points[:-1], points[1:]))
        if not legs:
            return []
        results: List[Optional[DistanceResult]] = [None] * len(legs)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(legs))) as executor:
            futures = {
                executor.submit(self.measure, origin, destination): index
                for index, (origin, destination) in enumerate(legs)
            }
            for future, index in futures.items():
                try:
                    results[index] = future.result()
                except Exception as e:
                    # measure() never raises; a crash here is a bug in the worker
                    logger.error(f"Distance leg {index} failed unexpectedly: {e}", exc_info=True)
                    results[index] = estimate_walking(*legs[index])
        return results
