"""
Key-value persistence for campaign snapshots, session profiles and visited places.

Two backends share one narrow interface (get / set / delete / scan_prefix):
RedisStore for deployments and MemoryStore for tests and single-process use.
Values are JSON strings; last write wins per key.
"""

import json
import logging
import threading
from typing import Dict, List, Optional

import redis
from pydantic import ValidationError

from . import config
from .dependencies import get_redis_connection
from .error_utils import SideQuestError
from .pydantic_models import Campaign, JourneyStats, StoredCampaign, VerificationOutcome
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)

# --- KEYS ---
CURRENT_CAMPAIGN_KEY = "current_campaign_id"
CAMPAIGN_HISTORY_KEY = "campaign_history"


def get_campaign_key(campaign_id):
    return f"campaign:{campaign_id}"


def get_session_context_key(campaign_id):
    return f"session_context:{campaign_id}"


def get_visited_place_key(place_id):
    return f"visited_place:{place_id}"


# --- BACKENDS ---
class MemoryStore:
    """Thread-safe in-process store."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def scan_prefix(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class RedisStore:
    """Redis-backed store. Connection errors surface as STORAGE_ERROR."""

    def __init__(self, client=None, url: Optional[str] = None):
        self.client = client if client is not None else get_redis_connection(url)
        if self.client is None:
            raise SideQuestError("STORAGE_ERROR", "Redis is not reachable")

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.exceptions.RedisError as e:
            raise SideQuestError("STORAGE_ERROR", details={"key": key, "error": str(e)}) from e

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except redis.exceptions.RedisError as e:
            raise SideQuestError("STORAGE_ERROR", details={"key": key, "error": str(e)}) from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.exceptions.RedisError as e:
            raise SideQuestError("STORAGE_ERROR", details={"key": key, "error": str(e)}) from e

    def scan_prefix(self, prefix: str) -> List[str]:
        try:
            return sorted(self.client.scan_iter(match=f"{prefix}*"))
        except redis.exceptions.RedisError as e:
            raise SideQuestError("STORAGE_ERROR", details={"prefix": prefix, "error": str(e)}) from e


# --- CAMPAIGN SNAPSHOTS ---
class CampaignRepository:
    """Campaign snapshots plus a bounded most-recent-first history."""

    def __init__(self, store, max_history: Optional[int] = None):
        self.store = store
        self.max_history = max_history or config.MAX_CAMPAIGN_HISTORY

    def save(self, campaign: Campaign, completed_quests: Optional[List[str]] = None,
             verification_results: Optional[Dict[str, VerificationOutcome]] = None,
             journey_stats: Optional[JourneyStats] = None) -> StoredCampaign:
        """
        Persist the campaign at its current cursor and mark it as the active one.

        Inline image data is not stored; illustrations are regenerated on resume.
        """
        quests = [
            quest.model_copy(update={'illustration_url': None})
            if quest.illustration_url and quest.illustration_url.startswith('data:') else quest
            for quest in campaign.quests
        ]
        stored = StoredCampaign(
            campaign=campaign.model_copy(update={'quests': quests}),
            last_played_at=now_utc(),
            completed_quests=list(completed_quests or []),
            verification_results=dict(verification_results or {}),
            journey_stats=journey_stats,
        )
        existing = self.load(campaign.id)
        if existing is not None and existing.completed_at is not None:
            stored.completed_at = existing.completed_at

        self.store.set(get_campaign_key(campaign.id), stored.model_dump_json())
        self.store.set(CURRENT_CAMPAIGN_KEY, campaign.id)
        logger.info(f"Saved campaign {campaign.id} at quest {campaign.current_quest_index}")
        return stored

    def load(self, campaign_id: str) -> Optional[StoredCampaign]:
        raw = self.store.get(get_campaign_key(campaign_id))
        if not raw:
            return None
        try:
            return StoredCampaign.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Stored campaign {campaign_id} is corrupt: {e}")
            return None

    def get_current_campaign_id(self) -> Optional[str]:
        return self.store.get(CURRENT_CAMPAIGN_KEY)

    def clear_current(self) -> None:
        self.store.delete(CURRENT_CAMPAIGN_KEY)

    def mark_complete(self, campaign_id: str) -> Optional[StoredCampaign]:
        stored = self.load(campaign_id)
        if stored is None:
            logger.warning(f"Cannot mark missing campaign {campaign_id} complete")
            return None
        stored.completed_at = now_utc()
        self.store.set(get_campaign_key(campaign_id), stored.model_dump_json())
        logger.info(f"Marked campaign {campaign_id} as complete")
        return stored

    def _history_ids(self) -> List[str]:
        raw = self.store.get(CAMPAIGN_HISTORY_KEY)
        if not raw:
            return []
        try:
            history = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Campaign history is corrupt; starting a new one")
            return []
        return [str(cid) for cid in history] if isinstance(history, list) else []

    def add_to_history(self, campaign_id: str) -> List[str]:
        """Move `campaign_id` to the front of the history, deleting snapshots that fall off the end."""
        history = [campaign_id] + [cid for cid in self._history_ids() if cid != campaign_id]
        if len(history) > self.max_history:
            for removed in history[self.max_history:]:
                self.delete(removed)
            history = history[:self.max_history]
        self.store.set(CAMPAIGN_HISTORY_KEY, json.dumps(history))
        return history

    def history(self) -> List[StoredCampaign]:
        campaigns = []
        for campaign_id in self._history_ids():
            stored = self.load(campaign_id)
            if stored is not None:
                campaigns.append(stored)
        return campaigns

    def delete(self, campaign_id: str) -> None:
        self.store.delete(get_campaign_key(campaign_id))
        if self.get_current_campaign_id() == campaign_id:
            self.clear_current()
        logger.info(f"Deleted campaign {campaign_id}")
