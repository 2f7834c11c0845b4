"""
Session context tracking for a single campaign.

The SessionProfile is rebuilt from the full quest history after every
adjudication by `apply_attempt`, a pure function. Only the voice state's
callback phrases and nickname carry over from the previous profile, since
those are earned once and never taken back.
"""

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from .geo import haversine_km
from .pydantic_models import (
    MEDIA_TYPE_ORDER, Campaign, JourneyStats, MediaType, QuestAttemptSummary, SessionProfile, VoiceState,
)
from .storage import get_session_context_key
from .timezone_utils import seconds_between

logger = logging.getLogger(__name__)

MAX_CALLBACK_PHRASES = 3
MAX_ISSUE_TAGS = 3

# Ordered taxonomy; ties in frequency keep this order. English keywords only.
ISSUE_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ('lighting', ('light', 'bright', 'dark')),
    ('framing', ('frame', 'angle', 'composition')),
    ('wrong subject', ('subject', 'object', 'target')),
    ('distance', ('distance', 'close', 'far')),
    ('motion capture', ('motion', 'movement', 'activity')),
    ('audio clarity', ('sound', 'audio', 'noise')),
]

VOICE_BANDS = [
    # (minimum success rate, encouragement level, narrative tone)
    (0.8, 'low', "Confident companion who respects your skills"),
    (0.5, 'medium', "Friendly and encouraging guide with a sense of adventure"),
    (0.0, 'high', "Supportive mentor who celebrates small wins"),
]

DETAILED_REFERENCE_MIN_QUESTS = 3


# --- PURE DERIVATIONS ---
def tag_issues(history: List[QuestAttemptSummary]) -> List[str]:
    """Recurring failure themes across every failed criterion note, most frequent first."""
    counts: Dict[str, int] = {}
    for summary in history:
        for note in summary.criterion_notes:
            if note.passed:
                continue
            criterion = note.criterion.lower()
            for tag, keywords in ISSUE_KEYWORDS:
                if any(keyword in criterion for keyword in keywords):
                    counts[tag] = counts.get(tag, 0) + 1

    order = [tag for tag, _ in ISSUE_KEYWORDS]
    recurring = [tag for tag in order if counts.get(tag, 0) > 1]
    recurring.sort(key=lambda tag: (-counts[tag], order.index(tag)))
    return recurring[:MAX_ISSUE_TAGS]


def rank_media_types(history: List[QuestAttemptSummary]) -> Tuple[Optional[MediaType], Optional[MediaType]]:
    """
    Strongest and weakest media types by per-type success ratio.

    Returns:
        Tuple of (strongest, weakest); weakest needs more than one type with data
    """
    totals = {media_type: [0, 0] for media_type in MEDIA_TYPE_ORDER}
    for summary in history:
        stats = totals[MediaType(summary.media_type)]
        stats[1] += 1
        if summary.final_success:
            stats[0] += 1

    rates = [(media_type, s / t) for media_type, (s, t) in totals.items() if t > 0]
    if not rates:
        return None, None
    # Stable sort keeps PHOTO, VIDEO, AUDIO order among equal rates
    rates.sort(key=lambda item: -item[1])

    strongest = rates[0][0] if rates[0][1] > 0 else None
    weakest = rates[-1][0] if len(rates) > 1 and rates[-1][1] < 1.0 else None
    return strongest, weakest


def _callback_triggers(profile: SessionProfile) -> List[str]:
    phrases = []
    if 'lighting' in profile.common_issue_tags:
        phrases.append("your ongoing battle with lighting")
    if profile.strongest_media_type == MediaType.PHOTO and profile.weakest_media_type == MediaType.VIDEO:
        phrases.append("being a photo pro but video-shy")
    if profile.strongest_media_type == MediaType.AUDIO:
        phrases.append("having golden ears for audio quests")
    if profile.average_attempts_per_quest > 2:
        phrases.append("your persistence and determination")
    return phrases


def _earned_nickname(profile: SessionProfile) -> Optional[str]:
    if len(profile.quest_history) >= 5 and profile.success_rate >= 0.8:
        return "Explorer"
    if profile.total_attempts >= 10 and profile.success_rate < 0.5:
        return "Determined One"
    return None


def derive_voice(previous: VoiceState, profile: SessionProfile) -> VoiceState:
    """Tone and encouragement from the current success rate; phrases and nickname only accumulate."""
    for minimum, level, tone in VOICE_BANDS:
        if profile.success_rate >= minimum:
            encouragement, narrative_tone = level, tone
            break

    phrases = list(previous.callback_phrases)
    for phrase in _callback_triggers(profile):
        if phrase in phrases:
            continue
        phrases.append(phrase)
        if len(phrases) > MAX_CALLBACK_PHRASES:
            phrases.pop(0)

    return VoiceState(
        narrative_tone=narrative_tone,
        encouragement_level=encouragement,
        reference_style='detailed' if len(profile.quest_history) >= DETAILED_REFERENCE_MIN_QUESTS else 'brief',
        callback_phrases=phrases,
        earned_nickname=previous.earned_nickname or _earned_nickname(profile),
    )


def apply_attempt(profile: SessionProfile, attempt: QuestAttemptSummary) -> SessionProfile:
    """
    Fold one adjudicated quest summary into the profile.

    A later summary for the same quest replaces the earlier one. Every
    aggregate is recomputed from the resulting history.
    """
    history = [s for s in profile.quest_history]
    for index, existing in enumerate(history):
        if existing.quest_id == attempt.quest_id:
            history[index] = attempt
            break
    else:
        history.append(attempt)

    quest_count = len(history)
    total_attempts = sum(s.attempts for s in history)
    successes = sum(1 for s in history if s.final_success)
    confidences = [note.confidence for s in history for note in s.criterion_notes]
    strongest, weakest = rank_media_types(history)

    rebuilt = SessionProfile(
        campaign_id=profile.campaign_id,
        quest_history=history,
        total_attempts=total_attempts,
        success_rate=successes / quest_count if quest_count else 0.0,
        average_attempts_per_quest=total_attempts / quest_count if quest_count else 0.0,
        strongest_media_type=strongest,
        weakest_media_type=weakest,
        common_issue_tags=tag_issues(history),
        average_confidence=round(sum(confidences) / len(confidences)) if confidences else 0,
    )
    rebuilt.voice_state = derive_voice(profile.voice_state, rebuilt)
    return rebuilt


def find_summary(profile: SessionProfile, quest_id: str) -> Optional[QuestAttemptSummary]:
    for summary in profile.quest_history:
        if summary.quest_id == quest_id:
            return summary
    return None


# --- PROMPT CONTEXT ---
def build_verification_hint(profile: SessionProfile) -> str:
    """Short player summary passed alongside each adjudication."""
    if not profile.quest_history:
        return ""
    hint = (
        f"PLAYER CONTEXT: {len(profile.quest_history)} quests attempted "
        f"({profile.success_rate * 100:.0f}% success rate). "
    )
    if profile.common_issue_tags:
        hint += f"Common issues: {', '.join(profile.common_issue_tags)}. "
    hint += f"Encouragement level: {profile.voice_state.encouragement_level}."
    if profile.voice_state.earned_nickname:
        hint += f' Call them "{profile.voice_state.earned_nickname}" if appropriate.'
    return hint


def _journey_section(journey: JourneyStats) -> List[str]:
    lines = [
        "",
        "JOURNEY SUMMARY:",
        f"- Total distance traveled: {journey.total_distance_km:.2f} km",
        f"- Journey duration: {journey.duration_minutes} minutes",
        f"- GPS path points captured: {len(journey.path_points)}",
        f"- Quests completed during journey: {len(journey.quest_completion_times)}",
    ]
    points = journey.path_points
    if len(points) >= 2:
        elapsed = seconds_between(points[0].timestamp, points[-1].timestamp)
        speed = (journey.total_distance_km * 1000) / elapsed if elapsed > 0 else 0.0
        if speed < 0.5:
            style = "Stationary/minimal movement"
        elif speed < 1.5:
            style = "Slow walking pace"
        elif speed < 2.5:
            style = "Normal walking pace"
        else:
            style = "Brisk walking/running"
        spread_km = haversine_km(points[0].coordinates, points[-1].coordinates)
        lines.append(f"- Average movement speed: {speed:.2f} m/s ({speed * 3.6:.1f} km/h), {style}")
        lines.append(f"- Start to latest point: {spread_km:.2f} km")
    return lines


def build_context_prompt(profile: SessionProfile, campaign: Optional[Campaign] = None,
                         journey: Optional[JourneyStats] = None) -> str:
    """Campaign memory block: quest history, patterns, voice, and optionally the journey so far."""
    if not profile.quest_history:
        return ""

    lines = [
        "CAMPAIGN MEMORY:",
        f"- Total quests attempted: {len(profile.quest_history)}",
        f"- Success rate: {profile.success_rate * 100:.0f}%",
        f"- Average attempts per quest: {profile.average_attempts_per_quest:.1f}",
        f"- Average AI confidence: {profile.average_confidence}%",
    ]
    if campaign is not None:
        lines.append(f"- Campaign: {campaign.location or campaign.id}, quest "
                     f"{min(campaign.current_quest_index + 1, len(campaign.quests))} of {len(campaign.quests)}")
    if profile.strongest_media_type:
        lines.append(f"- Strongest media type: {profile.strongest_media_type.value}")
    if profile.weakest_media_type:
        lines.append(f"- Needs practice with: {profile.weakest_media_type.value}")
    if profile.common_issue_tags:
        lines.append(f"- Common challenges: {', '.join(profile.common_issue_tags)}")

    lines += ["", "QUEST HISTORY:"]
    for summary in profile.quest_history:
        status = "Completed" if summary.final_success else "Failed"
        lines.append(f'Quest: "{summary.quest_title}" ({summary.media_type.value}) '
                     f'{status} in {summary.attempts} attempt(s), {summary.time_spent_seconds}s')
        if summary.distance_from_target_meters is not None:
            lines.append(f"- GPS distance from target: {summary.distance_from_target_meters:.0f}m")
        for i, feedback in enumerate(summary.feedback, start=1):
            lines.append(f'  {i}. "{feedback}"')
        for note in summary.criterion_notes:
            lines.append(f"  - {note.criterion}: {'Passed' if note.passed else 'Failed'} ({note.confidence}%)")

    if journey is not None and journey.path_points:
        lines += _journey_section(journey)

    voice = profile.voice_state
    lines += [
        "",
        "PERSONALITY CONTEXT:",
        f"- Voice: {voice.narrative_tone}",
        f"- Encouragement level: {voice.encouragement_level}",
        f"- Reference style: {voice.reference_style}",
    ]
    if voice.earned_nickname:
        lines.append(f'- Player nickname: "{voice.earned_nickname}"')
    if voice.callback_phrases:
        lines.append(f"- Running jokes: {'; '.join(voice.callback_phrases)}")
    return "\n".join(lines) + "\n"


# --- TRACKER ---
class SessionContextTracker:
    """
    Holds the live profile for the active campaign.

    Created empty on campaign start and discarded on completion or abandon.
    Persists through the key-value store when one is given.
    """

    def __init__(self, campaign_id: str, store=None, profile: Optional[SessionProfile] = None):
        self.campaign_id = campaign_id
        self.store = store
        self.profile = profile or SessionProfile(campaign_id=campaign_id)

    @classmethod
    def start(cls, campaign_id: str, store=None) -> "SessionContextTracker":
        tracker = cls(campaign_id, store)
        tracker.save()
        return tracker

    @classmethod
    def load(cls, campaign_id: str, store) -> Optional["SessionContextTracker"]:
        raw = store.get(get_session_context_key(campaign_id))
        if not raw:
            return None
        try:
            profile = SessionProfile.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Session context for {campaign_id} is corrupt, ignoring: {e}")
            return None
        return cls(campaign_id, store, profile)

    def record(self, attempt: QuestAttemptSummary) -> SessionProfile:
        self.profile = apply_attempt(self.profile, attempt)
        self.save()
        return self.profile

    def previous_summary(self, quest_id: str) -> Optional[QuestAttemptSummary]:
        return find_summary(self.profile, quest_id)

    def verification_hint(self) -> str:
        return build_verification_hint(self.profile)

    def save(self) -> None:
        if self.store is None:
            return
        self.store.set(get_session_context_key(self.campaign_id), self.profile.model_dump_json())

    def discard(self) -> None:
        if self.store is not None:
            self.store.delete(get_session_context_key(self.campaign_id))
        self.profile = SessionProfile(campaign_id=self.campaign_id)
        logger.info(f"Discarded session context for campaign {self.campaign_id}")
