"""
GPS verification gate.

Two independent checks on a submission's location:
  - confidence(): soft [0, 1] score handed to the adjudicator as leniency context
  - check_threshold(): hard pre-filter applied before any adjudication call
"""

import logging
from typing import Optional

from . import config
from .geo import haversine_m
from .pydantic_models import Coordinates, GateResult

logger = logging.getLogger(__name__)

# (upper bound in metres, confidence at the lower bound, confidence at the upper bound)
CONFIDENCE_CURVE = [
    (15.0, 1.0, 1.0),
    (30.0, 1.0, 0.8),
    (50.0, 0.8, 0.5),
    (100.0, 0.5, 0.2),
]
# Beyond the last anchor confidence falls linearly to 0 over this many metres
CONFIDENCE_TAIL_METERS = 200.0

_UNSET = object()


def effective_distance(distance_m: float, accuracy_m: Optional[float] = 0.0) -> float:
    """Raw distance inflated by part of the accuracy radius; poor accuracy counts against the player."""
    accuracy = max(accuracy_m or 0.0, 0.0)
    return max(distance_m, 0.0) + config.GPS_ACCURACY_PENALTY * accuracy


def confidence(distance_m: Optional[float], accuracy_m: Optional[float] = 0.0) -> float:
    """
    Trust in the player's presence at the target, from 1.0 (on the spot) down to 0.

    Args:
        distance_m: Straight-line distance to the target, None if unknown
        accuracy_m: Reported GPS accuracy radius

    Returns:
        float: Confidence in [0, 1], monotonically non-increasing in distance
    """
    if distance_m is None:
        return 0.0
    d = effective_distance(distance_m, accuracy_m)
    lower = 0.0
    for upper, start_value, end_value in CONFIDENCE_CURVE:
        if d <= upper:
            if upper == lower:
                return end_value
            return start_value + (end_value - start_value) * (d - lower) / (upper - lower)
        lower = upper
    tail_start = CONFIDENCE_CURVE[-1][2]
    return max(0.0, tail_start * (1 - (d - lower) / CONFIDENCE_TAIL_METERS))


def confidence_label(value: float) -> str:
    if value >= 0.9:
        return 'excellent'
    if value >= 0.7:
        return 'good'
    if value >= 0.5:
        return 'fair'
    if value >= 0.3:
        return 'uncertain'
    return 'unreliable'


def is_strong_signal(value: float) -> bool:
    return value > config.GPS_STRONG_SIGNAL_THRESHOLD


def format_rejection(distance_m: float, max_distance_m: float) -> str:
    # Under 1 km the rounded km figure alone can match the limit, so add metres
    metres = f" ({distance_m:.0f} m)" if distance_m < 1000 else ""
    return (
        f"You are {distance_m / 1000:.1f} km away from the quest location{metres}. "
        f"You need to be within {max_distance_m:.0f} m ({max_distance_m / 1000:.1f} km) to submit."
    )


def check_threshold(user: Optional[Coordinates], target: Optional[Coordinates],
                    max_distance_m=_UNSET) -> GateResult:
    """
    Hard distance gate.

    Passing None for max_distance_m disables the gate. Missing coordinates
    always pass so a player is never blocked for lacking GPS.
    """
    if max_distance_m is _UNSET:
        max_distance_m = config.GPS_MAX_DISTANCE_METERS
    if max_distance_m is None:
        return GateResult(allowed=True)
    if user is None or target is None:
        logger.debug("GPS gate skipped: coordinates missing")
        return GateResult(allowed=True)

    distance_m = haversine_m(user, target)
    if distance_m <= max_distance_m:
        return GateResult(allowed=True, distance_meters=distance_m)

    logger.info(f"GPS gate rejected submission at {distance_m:.0f}m (limit {max_distance_m:.0f}m)")
    return GateResult(
        allowed=False,
        rejection_message=format_rejection(distance_m, max_distance_m),
        distance_meters=distance_m,
    )
