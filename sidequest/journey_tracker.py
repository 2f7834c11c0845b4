import logging
from datetime import datetime
from typing import Optional

from . import config
from .geo import haversine_m
from .pydantic_models import Coordinates, JourneyPoint, JourneyStats
from .timezone_utils import ensure_utc, now_utc, seconds_between

logger = logging.getLogger(__name__)


class JourneyTracker:
    """
    Records the player's GPS path during a campaign.

    Fixes worse than JOURNEY_MAX_ACCURACY_METERS are ignored. A new point is
    kept only after the player has moved JOURNEY_MIN_DISTANCE_METERS or
    JOURNEY_MIN_SECONDS have passed since the last kept point.
    """

    def __init__(self, stats: Optional[JourneyStats] = None, start_time: Optional[datetime] = None):
        self.stats = stats or JourneyStats(start_time=ensure_utc(start_time) if start_time else now_utc())

    @property
    def last_point(self) -> Optional[JourneyPoint]:
        return self.stats.path_points[-1] if self.stats.path_points else None

    def record_point(self, coordinates: Coordinates, accuracy_meters: float, quest_index: int,
                     at: Optional[datetime] = None) -> bool:
        """Returns True if the fix was kept."""
        if accuracy_meters > config.JOURNEY_MAX_ACCURACY_METERS:
            logger.debug(f"Ignoring GPS fix with poor accuracy: {accuracy_meters}m")
            return False
        at = ensure_utc(at) if at else now_utc()

        previous = self.last_point
        moved_m = 0.0
        if previous is not None:
            moved_m = haversine_m(previous.coordinates, coordinates)
            elapsed = seconds_between(previous.timestamp, at)
            if moved_m < config.JOURNEY_MIN_DISTANCE_METERS and elapsed < config.JOURNEY_MIN_SECONDS:
                return False

        point = JourneyPoint(coordinates=coordinates, timestamp=at, accuracy_meters=accuracy_meters,
                             quest_index=quest_index)
        self.stats = self.stats.model_copy(update={
            'total_distance_km': self.stats.total_distance_km + moved_m / 1000,
            'path_points': self.stats.path_points + [point],
            'duration_minutes': round(seconds_between(self.stats.start_time, at) / 60),
        })
        return True

    def mark_quest_complete(self, at: Optional[datetime] = None) -> None:
        at = ensure_utc(at) if at else now_utc()
        self.stats = self.stats.model_copy(update={
            'quest_completion_times': self.stats.quest_completion_times + [at],
        })

    def finalize(self, at: Optional[datetime] = None) -> JourneyStats:
        at = ensure_utc(at) if at else now_utc()
        self.stats = self.stats.model_copy(update={
            'end_time': at,
            'duration_minutes': round(seconds_between(self.stats.start_time, at) / 60),
        })
        logger.info(f"Journey finished: {self.stats.total_distance_km:.2f}km over "
                    f"{self.stats.duration_minutes} minutes, {len(self.stats.path_points)} points")
        return self.stats
