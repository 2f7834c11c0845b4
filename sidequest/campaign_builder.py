"""
Campaign generation pipeline.

geocode (optional) -> resolve locations -> measure route legs (concurrent) -> draft quests ->
illustrate quests (concurrent, non-fatal) -> record visits in the ledger.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from . import config, gemini_service
from .distance_engine import DistanceEngine
from .error_utils import CampaignGenerationError
from .geocoder import Geocoder
from .location_resolver import QuestLocationResolver
from .pydantic_models import (
    Campaign, Coordinates, DistanceRangeProfile, Quest, point_coordinates, point_place,
)
from .visited_ledger import VisitedPlaceLedger

logger = logging.getLogger(__name__)


class CampaignBuilder:
    def __init__(self, resolver: QuestLocationResolver, distance_engine: Optional[DistanceEngine] = None,
                 ledger: Optional[VisitedPlaceLedger] = None, gemini_client=None,
                 illustrate: bool = True, max_workers: Optional[int] = None, geocoder: Optional[Geocoder] = None):
        self.resolver = resolver
        self.geocoder = geocoder or Geocoder()
        self.distance_engine = distance_engine or DistanceEngine()
        self.ledger = ledger
        self.gemini_client = gemini_client
        self.illustrate = illustrate
        self.max_workers = max_workers or config.DISTANCE_FANOUT_WORKERS

    def _illustrate_all(self, quests: List[Quest]) -> List[Quest]:
        """Generates every illustration in parallel; a failed one only flags its own quest."""
        urls: List[Optional[str]] = [None] * len(quests)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(quests))) as executor:
            futures = {
                executor.submit(gemini_service.generate_quest_illustration, quest, self.gemini_client): index
                for index, quest in enumerate(quests)
            }
            for future, index in futures.items():
                try:
                    urls[index] = future.result()
                except Exception as e:
                    logger.error(f"Illustration worker for quest {quests[index].id} crashed: {e}", exc_info=True)
        failed = sum(1 for url in urls if url is None)
        if failed:
            logger.warning(f"{failed}/{len(quests)} quest illustrations failed; campaign continues without them")
        return [quest.with_illustration(url) for quest, url in zip(quests, urls)]

    def generate_campaign(self, start: Coordinates, range_profile: DistanceRangeProfile, quest_count: int,
                          location_label: str = "") -> Campaign:
        """
        Build a playable campaign around `start`.

        Args:
            start: Player's starting coordinates
            range_profile: Distance tier for quest spacing
            quest_count: Number of quests to generate
            location_label: Human-readable area name for the quest writer

        Returns:
            Campaign: Quests in route order with the cursor at the first quest

        Raises:
            CampaignGenerationError: Quest drafting failed
        """
        if quest_count <= 0:
            raise CampaignGenerationError("A campaign needs at least one quest", {"quest_count": quest_count})
        campaign_id = str(uuid.uuid4())
        logger.info(f"Generating campaign {campaign_id}: {quest_count} quests, {range_profile.name} range")

        points = self.resolver.resolve(start, range_profile, quest_count)
        coordinates = [point_coordinates(p) for p in points]
        legs = self.distance_engine.measure_legs([start] + coordinates)
        total_km = sum(leg.distance_km for leg in legs)
        total_minutes = sum(leg.duration_minutes for leg in legs)
        logger.info(f"Campaign {campaign_id} route: {total_km:.1f}km, ~{total_minutes} minutes walking")

        drafts = gemini_service.draft_quests(location_label, range_profile, points, legs, self.gemini_client)

        quests = []
        for index, (draft, point, leg) in enumerate(zip(drafts, points, legs)):
            place = point_place(point)
            quests.append(Quest(
                id=f"q{index + 1}",
                title=draft.title,
                narrative=draft.narrative,
                objective=draft.objective,
                secret_criteria=draft.secret_criteria,
                location_hint=draft.location_hint,
                difficulty=draft.difficulty,
                media_type=draft.media_type,
                coordinates=point_coordinates(point),
                distance_from_previous_km=leg.distance_km,
                estimated_minutes=leg.duration_minutes,
                place_name=place.name if place else None,
                place_types=list(place.types) if place else [],
            ))

        if self.illustrate:
            quests = self._illustrate_all(quests)

        if self.ledger is not None:
            place_ids = [place.place_id for place in (point_place(p) for p in points) if place is not None]
            if place_ids:
                self.ledger.record_visits(place_ids, campaign_id)

        return Campaign(
            id=campaign_id,
            location=location_label,
            quests=quests,
            distance_range=range_profile.name,
            start_coordinates=start,
            total_distance_km=total_km,
            estimated_total_minutes=total_minutes,
        )

    def generate_for_location(self, location: str, range_profile: DistanceRangeProfile,
                              quest_count: int) -> Campaign:
        """
        Geocode a typed location ("Da Nang, Vietnam") and build a campaign starting there.

        Raises:
            GeocodingError: The location could not be resolved
            CampaignGenerationError: Quest drafting failed
        """
        located = self.geocoder.geocode(location)
        return self.generate_campaign(located.coordinates, range_profile, quest_count,
                                      location_label=located.name)
