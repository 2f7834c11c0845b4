"""
Quest location resolution.

Tries a fixed list of strategies in order and returns the first that yields a
full set of locations. The last strategy (synthetic points) cannot fail, so
`resolve` always returns exactly `target_count` located points.
"""

import logging
import random
from typing import Any, Callable, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from .geo import destination_point
from .place_selector import PlaceSelector
from .places_client import PlacesClient
from .pydantic_models import (
    Coordinates, DistanceRangeProfile, LocatedPoint, RealPlace, SyntheticPoint, next_wider_profile,
)
from .visited_ledger import LedgerSnapshot, NoveltyPolicy, VisitedPlaceLedger

logger = logging.getLogger(__name__)


# --- STRATEGY RESULTS ---
class StrategyResult(BaseModel):
    status: Literal['success', 'insufficient', 'error']
    data: List[Any] = []
    error: Optional[str] = None

    @classmethod
    def success(cls, data) -> "StrategyResult":
        return cls(status='success', data=list(data))

    @classmethod
    def insufficient(cls) -> "StrategyResult":
        return cls(status='insufficient')

    @classmethod
    def failed(cls, error: str) -> "StrategyResult":
        return cls(status='error', error=error)

    @property
    def ok(self) -> bool:
        return self.status == 'success'


Strategy = Tuple[str, Callable[[], StrategyResult]]


def first_success(strategies: Sequence[Strategy]) -> Tuple[Optional[str], StrategyResult, List[Tuple[str, StrategyResult]]]:
    """
    Run strategies in order until one succeeds.

    A strategy that raises is logged and recorded as an error result.

    Returns:
        Tuple of (winning strategy name or None, its result, every attempt made)
    """
    attempts = []
    for name, strategy in strategies:
        try:
            result = strategy()
        except Exception as e:
            logger.error(f"Location strategy '{name}' raised: {e}", exc_info=True)
            result = StrategyResult.failed(str(e))
        attempts.append((name, result))
        if result.ok:
            return name, result, attempts
        logger.info(f"Location strategy '{name}' returned {result.status}")
    return None, StrategyResult.insufficient(), attempts


def generate_synthetic_points(start: Coordinates, profile: DistanceRangeProfile, count: int,
                              rng: Optional[random.Random] = None) -> List[SyntheticPoint]:
    """Random bearings, distances uniform in the profile's band."""
    rng = rng or random.Random()
    points = []
    for _ in range(count):
        bearing = rng.uniform(0.0, 360.0)
        distance_km = rng.uniform(profile.min_km, profile.max_km)
        points.append(SyntheticPoint(coordinates=destination_point(start, bearing, distance_km)))
    return points


class QuestLocationResolver:
    def __init__(self, places_client: PlacesClient, ledger: Optional[VisitedPlaceLedger] = None,
                 selector: Optional[PlaceSelector] = None, rng: Optional[random.Random] = None):
        self.places_client = places_client
        self.ledger = ledger
        self.rng = rng or random.Random()
        self.selector = selector or PlaceSelector(rng=self.rng)
        self.last_strategy: Optional[str] = None

    def _snapshot(self) -> LedgerSnapshot:
        if self.ledger is None:
            return LedgerSnapshot.empty()
        return self.ledger.snapshot()

    def _select(self, selector, pool, target_count, profile, start, snapshot) -> StrategyResult:
        chosen = selector.select(pool, target_count, profile, start, snapshot)
        if len(chosen) < target_count:
            return StrategyResult.insufficient()
        return StrategyResult.success(RealPlace(place=p) for p in chosen[:target_count])

    def build_strategies(self, start: Coordinates, profile: DistanceRangeProfile,
                         target_count: int) -> List[Strategy]:
        snapshot = self._snapshot()
        cache = {}

        def original_pool():
            if 'pool' not in cache:
                cache['pool'] = self.places_client.search_nearby(start, profile)
            return cache['pool']

        def primary():
            return self._select(self.selector, original_pool(), target_count, profile, start, snapshot)

        def escalate():
            wider = next_wider_profile(profile)
            if wider is None:
                return StrategyResult.insufficient()
            logger.info(f"Escalating place search from {profile.name} to {wider.name}")
            pool = self.places_client.search_nearby(start, wider)
            return self._select(self.selector, pool, target_count, wider, start, snapshot)

        def relaxed_novelty():
            relaxed: NoveltyPolicy = self.selector.policy.relaxed()
            return self._select(self.selector.with_policy(relaxed), original_pool(),
                                target_count, profile, start, snapshot)

        def synthetic():
            return StrategyResult.success(generate_synthetic_points(start, profile, target_count, self.rng))

        return [
            ('primary', primary),
            ('escalate_range', escalate),
            ('relaxed_novelty', relaxed_novelty),
            ('synthetic', synthetic),
        ]

    def resolve(self, start: Coordinates, range_profile: DistanceRangeProfile,
                target_count: int) -> List[LocatedPoint]:
        """
        Exactly `target_count` quest locations from the most realistic tier available.

        Args:
            start: Campaign start point
            range_profile: Requested distance tier
            target_count: Number of quests

        Returns:
            List[LocatedPoint]: RealPlace entries, or SyntheticPoint entries from the terminal fallback
        """
        if target_count <= 0:
            return []
        name, result, _ = first_success(self.build_strategies(start, range_profile, target_count))
        if name is None:
            # Unreachable while synthetic points are last in the chain
            logger.error("Every location strategy failed; generating synthetic points")
            name = 'synthetic'
            result = StrategyResult.success(generate_synthetic_points(start, range_profile, target_count, self.rng))
        self.last_strategy = name
        logger.info(f"Resolved {target_count} quest locations via '{name}' strategy")
        return list(result.data)
