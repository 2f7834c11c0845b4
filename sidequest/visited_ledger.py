"""
Visited-place ledger.

Records which places have been used in campaigns and when, and turns that
history into the novelty multipliers the place selector applies. The ledger is
an explicit object handed to the selector and resolver; selection reads an
immutable snapshot so a concurrent campaign write can't change scores mid-run.
"""

import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from . import config
from .pydantic_models import VisitedPlaceRecord
from .storage import get_visited_place_key
from .timezone_utils import age_in_days, now_utc

logger = logging.getLogger(__name__)

VISITED_CAMPAIGNS_KEY = "visited_campaigns"


class NoveltyPolicy(BaseModel):
    """Recency bands that map a visit record to a score multiplier."""
    model_config = ConfigDict(frozen=True)

    exclusion_days: float = config.NOVELTY_EXCLUSION_DAYS
    exclusion_campaigns: int = config.NOVELTY_EXCLUSION_CAMPAIGNS
    # (max age in days, multiplier), ascending by age
    bands: Tuple[Tuple[float, float], ...] = tuple(config.NOVELTY_BANDS)
    older_multiplier: float = config.NOVELTY_OLDER_MULTIPLIER
    min_unvisited_ratio: float = config.MIN_UNVISITED_RATIO

    def multiplier(self, record: Optional[VisitedPlaceRecord], recent_campaigns: List[str],
                   now: Optional[datetime] = None) -> float:
        if record is None:
            return 1.0
        if self.exclusion_campaigns > 0:
            window = set(recent_campaigns[-self.exclusion_campaigns:])
            if window.intersection(record.campaign_history):
                return 0.0
        age = age_in_days(record.visited_at, now)
        if age < self.exclusion_days:
            return 0.0
        for max_age, value in self.bands:
            if age < max_age:
                return value
        return self.older_multiplier

    def relaxed(self) -> "NoveltyPolicy":
        """Short exclusion horizon and no campaign exclusion or unvisited quota."""
        return self.model_copy(update={
            'exclusion_days': config.RELAXED_EXCLUSION_DAYS,
            'exclusion_campaigns': 0,
            'min_unvisited_ratio': 0.0,
        })


class LedgerSnapshot(BaseModel):
    """Point-in-time read of the ledger."""
    model_config = ConfigDict(frozen=True)

    records: Dict[str, VisitedPlaceRecord] = {}
    # Campaign IDs in the order they recorded visits, oldest first
    recent_campaigns: List[str] = []
    taken_at: datetime

    def record_for(self, place_id: str) -> Optional[VisitedPlaceRecord]:
        return self.records.get(place_id)

    def multiplier(self, place_id: str, policy: NoveltyPolicy) -> float:
        return policy.multiplier(self.records.get(place_id), self.recent_campaigns, self.taken_at)

    @classmethod
    def empty(cls) -> "LedgerSnapshot":
        return cls(taken_at=now_utc())


class VisitedPlaceLedger:
    """Append-only visited-place records on top of a key-value store."""

    def __init__(self, store):
        self.store = store

    def _load_record(self, key: str) -> Optional[VisitedPlaceRecord]:
        raw = self.store.get(key)
        if not raw:
            return None
        try:
            return VisitedPlaceRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Skipping corrupt visited record {key}: {e}")
            return None

    def _recent_campaigns(self) -> List[str]:
        raw = self.store.get(VISITED_CAMPAIGNS_KEY)
        if not raw:
            return []
        try:
            return [str(c) for c in json.loads(raw)]
        except (json.JSONDecodeError, TypeError):
            logger.error("Visited campaign list is corrupt; treating as empty")
            return []

    def record_visits(self, place_ids: Iterable[str], campaign_id: Optional[str] = None,
                      at: Optional[datetime] = None) -> List[VisitedPlaceRecord]:
        """
        Append a visit to each place's record.

        Args:
            place_ids: Places used by the campaign
            campaign_id: Campaign the visit belongs to
            at: Visit time, defaults to now

        Returns:
            List[VisitedPlaceRecord]: The updated records
        """
        at = at or now_utc()
        updated = []
        for place_id in dict.fromkeys(place_ids):
            key = get_visited_place_key(place_id)
            existing = self._load_record(key)
            if existing is None:
                existing = VisitedPlaceRecord(place_id=place_id, visited_at=at)
            record = existing.with_visit(campaign_id, at)
            self.store.set(key, record.model_dump_json())
            updated.append(record)

        if campaign_id:
            campaigns = [c for c in self._recent_campaigns() if c != campaign_id]
            campaigns.append(campaign_id)
            self.store.set(VISITED_CAMPAIGNS_KEY, json.dumps(campaigns))

        logger.info(f"Recorded {len(updated)} visited places for campaign {campaign_id}")
        return updated

    def get(self, place_id: str) -> Optional[VisitedPlaceRecord]:
        return self._load_record(get_visited_place_key(place_id))

    def snapshot(self) -> LedgerSnapshot:
        records = {}
        for key in self.store.scan_prefix(get_visited_place_key("")):
            record = self._load_record(key)
            if record is not None:
                records[record.place_id] = record
        return LedgerSnapshot(records=records, recent_campaigns=self._recent_campaigns(), taken_at=now_utc())

    def reset(self) -> int:
        """User-initiated wipe of all visit history. Returns the number of records removed."""
        keys = self.store.scan_prefix(get_visited_place_key(""))
        for key in keys:
            self.store.delete(key)
        self.store.delete(VISITED_CAMPAIGNS_KEY)
        logger.info(f"Visited place ledger reset ({len(keys)} records removed)")
        return len(keys)
