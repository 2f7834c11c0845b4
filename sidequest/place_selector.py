import logging
import random
from typing import List, Optional, Sequence

import numpy as np

from . import config
from .geo import distance_matrix_km
from .pydantic_models import Coordinates, DistanceRangeProfile, PlaceCandidate
from .visited_ledger import LedgerSnapshot, NoveltyPolicy

logger = logging.getLogger(__name__)


def dedupe_candidates(candidates: Sequence[PlaceCandidate]) -> List[PlaceCandidate]:
    """Drops repeated place IDs, keeping the first occurrence."""
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.place_id in seen:
            continue
        seen.add(candidate.place_id)
        unique.append(candidate)
    return unique


def spacing_score(average_km: float, profile: DistanceRangeProfile) -> float:
    """
    1.0 at the band midpoint, 0.5 at either band edge, reaching 0 half a band
    width outside it.
    """
    half_width = (profile.max_km - profile.min_km) / 2
    if half_width <= 0:
        return 1.0 if average_km == profile.min_km else 0.0
    if profile.min_km <= average_km <= profile.max_km:
        return 1.0 - 0.5 * abs(average_km - profile.midpoint_km) / half_width
    if average_km < profile.min_km:
        outside = profile.min_km - average_km
    else:
        outside = average_km - profile.max_km
    return max(0.0, 0.5 * (1.0 - outside / half_width))


def radius_score(start_km: float, profile: DistanceRangeProfile) -> float:
    """Prefers candidates close to the start so the walk back stays short."""
    if profile.max_km <= 0:
        return 0.0
    return 1.0 - min(start_km / profile.max_km, 1.0)


class PlaceSelector:
    """
    Greedy, single-pass choice of well-spaced, type-diverse, novel places.

    `select` returns an empty list when too few in-range places are unvisited;
    callers treat that as the signal to broaden the search.
    """

    def __init__(self, policy: Optional[NoveltyPolicy] = None, rng: Optional[random.Random] = None,
                 spacing_weight: Optional[float] = None, radius_weight: Optional[float] = None,
                 diversity_bonus: Optional[float] = None):
        self.policy = policy or NoveltyPolicy()
        self.rng = rng or random.Random()
        self.spacing_weight = config.SPACING_WEIGHT if spacing_weight is None else spacing_weight
        self.radius_weight = config.RADIUS_WEIGHT if radius_weight is None else radius_weight
        self.diversity_bonus = config.DIVERSITY_BONUS if diversity_bonus is None else diversity_bonus

    def with_policy(self, policy: NoveltyPolicy) -> "PlaceSelector":
        return PlaceSelector(policy=policy, rng=self.rng, spacing_weight=self.spacing_weight,
                             radius_weight=self.radius_weight, diversity_bonus=self.diversity_bonus)

    def select(self, candidates: Sequence[PlaceCandidate], target_count: int,
               range_profile: DistanceRangeProfile, start: Coordinates,
               ledger_snapshot: Optional[LedgerSnapshot] = None) -> List[PlaceCandidate]:
        """
        Choose up to `target_count` places from the candidate pool.

        Args:
            candidates: Pool from the places lookup, in provider order
            target_count: Number of places wanted
            range_profile: Distance tier governing spacing and the start radius
            start: Campaign start point
            ledger_snapshot: Visit history to penalise recently used places

        Returns:
            List[PlaceCandidate]: Selected places in pick order, or [] for insufficient novelty
        """
        if target_count <= 0:
            return []
        pool = dedupe_candidates(candidates)
        if not pool:
            return []
        snapshot = ledger_snapshot or LedgerSnapshot.empty()

        # Step 1: range filter
        start_km = distance_matrix_km([start], [c.coordinates for c in pool])[0]
        in_range = [i for i, d in enumerate(start_km) if d <= range_profile.max_km]
        if not in_range:
            logger.warning(f"No candidates within {range_profile.max_km}km; using the first {target_count} unfiltered")
            return pool[:target_count]
        places = [pool[i] for i in in_range]
        start_km = start_km[in_range]

        # Step 2: novelty multipliers
        multipliers = [snapshot.multiplier(p.place_id, self.policy) for p in places]

        # Step 3: novelty quota
        unvisited = [i for i, m in enumerate(multipliers) if m == 1.0]
        ratio = len(unvisited) / len(places)
        if ratio < self.policy.min_unvisited_ratio:
            logger.info(
                f"Insufficient novelty: {len(unvisited)}/{len(places)} unvisited "
                f"({ratio:.2f} < {self.policy.min_unvisited_ratio:.2f})"
            )
            return []

        # Step 4: greedy growth
        pairwise = distance_matrix_km([p.coordinates for p in places], [p.coordinates for p in places])
        eligible = [i for i, m in enumerate(multipliers) if m > 0]
        seed_pool = unvisited or eligible or list(range(len(places)))
        selected = [self.rng.choice(seed_pool)]
        selected_types = {places[selected[0]].primary_type}

        while len(selected) < min(target_count, len(places)):
            best_index = None
            best_score = float('-inf')
            for i in eligible:
                if i in selected:
                    continue
                average_km = float(np.mean(pairwise[i, selected]))
                score = (
                    self.spacing_weight * spacing_score(average_km, range_profile)
                    + self.radius_weight * radius_score(float(start_km[i]), range_profile)
                )
                if places[i].primary_type not in selected_types:
                    score += self.diversity_bonus
                score *= multipliers[i]
                if score > best_score:
                    best_score = score
                    best_index = i

            if best_index is None:
                # Step 5: pool exhausted, fill from whatever is left
                best_index = next(i for i in range(len(places)) if i not in selected)
            selected.append(best_index)
            selected_types.add(places[best_index].primary_type)

        chosen = [places[i] for i in selected]
        logger.info(f"Selected {len(chosen)} places for the {range_profile.name} range")
        return chosen
