import logging
from typing import Dict, Optional, Tuple

from . import gemini_service
from .appeal_processor import reconsider
from .error_utils import CampaignCompleteError, InvalidAppealError
from .geo import haversine_m
from .gps_gate import check_threshold, confidence
from .journey_tracker import JourneyTracker
from .pydantic_models import (
    AppealDecision, Campaign, Coordinates, Quest, QuestAttemptSummary, SubmissionAttempt, VerificationOutcome,
)
from .session_context import SessionContextTracker
from .storage import CampaignRepository

logger = logging.getLogger(__name__)


class PlaySession:
    """
    Play-time flow for one active campaign.

    Each submission passes the GPS gate, is adjudicated with the session hint
    and GPS confidence, is folded into the session profile, and on success
    advances the campaign.
    """

    def __init__(self, campaign: Campaign, tracker: Optional[SessionContextTracker] = None,
                 repository: Optional[CampaignRepository] = None, journey: Optional[JourneyTracker] = None,
                 gemini_client=None, completed_quests=None, verification_results=None):
        self.campaign = campaign
        self.repository = repository
        store = repository.store if repository is not None else None
        self.tracker = tracker or SessionContextTracker.start(campaign.id, store)
        self.journey = journey or JourneyTracker()
        self.gemini_client = gemini_client
        self.completed_quests = list(completed_quests or [])
        self.verification_results: Dict[str, VerificationOutcome] = dict(verification_results or {})
        # Latest rejection per quest and the GPS confidence it was judged with
        self._rejections: Dict[str, Tuple[VerificationOutcome, float]] = {}

    @classmethod
    def resume(cls, campaign_id: str, repository: CampaignRepository, gemini_client=None) -> Optional["PlaySession"]:
        """Restores a saved campaign at its stored cursor."""
        stored = repository.load(campaign_id)
        if stored is None:
            logger.warning(f"No saved campaign {campaign_id} to resume")
            return None
        tracker = (SessionContextTracker.load(campaign_id, repository.store)
                   or SessionContextTracker.start(campaign_id, repository.store))
        journey = JourneyTracker(stats=stored.journey_stats) if stored.journey_stats else None
        logger.info(f"Resuming campaign {campaign_id} at quest {stored.campaign.current_quest_index}")
        return cls(stored.campaign, tracker=tracker, repository=repository, journey=journey,
                   gemini_client=gemini_client, completed_quests=stored.completed_quests,
                   verification_results=stored.verification_results)

    def _current_quest(self, quest_id: str) -> Quest:
        quest = self.campaign.current_quest
        if quest is None:
            raise CampaignCompleteError(self.campaign.id)
        if quest.id != quest_id:
            raise ValueError(f"Submission is for quest {quest_id} but the current quest is {quest.id}")
        return quest

    def record_location(self, coordinates: Coordinates, accuracy_meters: float) -> bool:
        return self.journey.record_point(coordinates, accuracy_meters, self.campaign.current_quest_index)

    def _record_summary(self, quest: Quest, outcome: VerificationOutcome, time_spent_seconds: int,
                        new_attempt: bool = True) -> None:
        previous = self.tracker.previous_summary(quest.id)
        attempts = (previous.attempts if previous else 0) + (1 if new_attempt else 0)
        summary = QuestAttemptSummary(
            quest_id=quest.id,
            quest_title=quest.title,
            media_type=quest.media_type,
            attempts=max(attempts, 1),
            final_success=outcome.accepted,
            feedback=(previous.feedback if previous else []) + ([outcome.feedback] if outcome.feedback else []),
            criterion_notes=outcome.per_criterion_notes or (previous.criterion_notes if previous else []),
            time_spent_seconds=(previous.time_spent_seconds if previous else 0) + time_spent_seconds,
            distance_from_target_meters=outcome.distance_from_target_meters,
        )
        self.tracker.record(summary)

    def submit(self, attempt: SubmissionAttempt, media_bytes: bytes, mime_type: str,
               time_spent_seconds: int = 0) -> VerificationOutcome:
        """
        Verify a submission for the current quest.

        Raises:
            AdjudicationParseError: The adjudicator's answer was unusable; the player should retry
            CampaignCompleteError: There is no current quest
        """
        quest = self._current_quest(attempt.quest_id)

        gate = check_threshold(attempt.gps_coordinates, quest.coordinates, quest.gps_threshold_meters)
        distance_m = gate.distance_meters
        if distance_m is None and attempt.gps_coordinates is not None:
            distance_m = haversine_m(attempt.gps_coordinates, quest.coordinates)
        gps_confidence = confidence(distance_m, attempt.gps_accuracy_meters)

        if not gate.allowed:
            outcome = VerificationOutcome(
                accepted=False,
                confidence=0,
                feedback=gate.rejection_message or "",
                rejection_kind='out_of_range',
                distance_from_target_meters=gate.distance_meters,
            )
            self.verification_results[quest.id] = outcome
            self._rejections[quest.id] = (outcome, gps_confidence)
            return outcome

        outcome = gemini_service.verify_submission(
            media_bytes, mime_type, quest,
            gps_confidence=gps_confidence,
            distance_m=distance_m,
            session_hint=self.tracker.verification_hint(),
            client=self.gemini_client,
        )
        self.verification_results[quest.id] = outcome
        self._record_summary(quest, outcome, time_spent_seconds)

        if outcome.accepted:
            self._rejections.pop(quest.id, None)
            self._complete_current_quest()
        else:
            self._rejections[quest.id] = (outcome, gps_confidence)
            self.save()
        return outcome

    def appeal(self, quest_id: str, user_explanation: str, media_bytes: bytes, mime_type: str) -> AppealDecision:
        """Re-evaluate the latest rejection of the current quest."""
        quest = self._current_quest(quest_id)
        if quest_id not in self._rejections:
            raise InvalidAppealError(f"Quest {quest_id} has no rejection to appeal")
        rejection, gps_confidence = self._rejections[quest_id]

        context = reconsider(rejection, user_explanation, gps_confidence, quest)
        decision = gemini_service.adjudicate_appeal(context, media_bytes, mime_type, client=self.gemini_client)

        if decision.success:
            accepted = rejection.model_copy(update={
                'accepted': True,
                'feedback': decision.feedback,
                'rejection_kind': None,
                'appealable': False,
            })
            self.verification_results[quest.id] = accepted
            self._record_summary(quest, accepted, 0, new_attempt=False)
            self._rejections.pop(quest.id, None)
            self._complete_current_quest()
        return decision

    def _complete_current_quest(self) -> None:
        quest = self.campaign.current_quest
        self.completed_quests.append(quest.id)
        self.journey.mark_quest_complete()
        self.campaign.advance()
        logger.info(f"Campaign {self.campaign.id}: quest {quest.id} complete "
                    f"({len(self.completed_quests)}/{len(self.campaign.quests)})")
        if self.campaign.is_complete:
            self.finish()
        else:
            self.save()

    def save(self) -> None:
        if self.repository is None:
            return
        self.repository.save(self.campaign, self.completed_quests, self.verification_results, self.journey.stats)

    def finish(self) -> None:
        """Finalize the journey, archive the campaign and drop the session context."""
        self.journey.finalize()
        if self.repository is not None:
            self.save()
            self.repository.mark_complete(self.campaign.id)
            self.repository.add_to_history(self.campaign.id)
            self.repository.clear_current()
        self.tracker.discard()

    def abandon(self) -> None:
        self.save()
        if self.repository is not None:
            self.repository.add_to_history(self.campaign.id)
            self.repository.clear_current()
        self.tracker.discard()
        logger.info(f"Campaign {self.campaign.id} abandoned at quest {self.campaign.current_quest_index}")
