from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated

from . import config
from .error_utils import CampaignCompleteError
from .timezone_utils import now_utc


class MediaType(str, Enum):
    PHOTO = "PHOTO"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"


# Tie-break order wherever media types are ranked
MEDIA_TYPE_ORDER = [MediaType.PHOTO, MediaType.VIDEO, MediaType.AUDIO]

Difficulty = Literal['easy', 'medium', 'hard']
EncouragementLevel = Literal['low', 'medium', 'high']
ReferenceStyle = Literal['brief', 'detailed']
RejectionKind = Literal['out_of_range', 'criteria_not_met']


# --- GEOGRAPHY ---
class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class GeocodedLocation(BaseModel):
    """A typed location string resolved to a starting point."""
    model_config = ConfigDict(frozen=True)

    name: str
    coordinates: Coordinates
    formatted_address: str = ""


class PlaceCandidate(BaseModel):
    """One point of interest from the places lookup. types[0] is the primary category."""
    model_config = ConfigDict(frozen=True)

    place_id: str
    name: str
    address: str = ""
    coordinates: Coordinates
    types: List[str] = []

    @property
    def primary_type(self) -> Optional[str]:
        return self.types[0] if self.types else None


class RealPlace(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal['place'] = 'place'
    place: PlaceCandidate


class SyntheticPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal['synthetic'] = 'synthetic'
    coordinates: Coordinates


LocatedPoint = Annotated[Union[RealPlace, SyntheticPoint], Field(discriminator='kind')]


def point_coordinates(point) -> Coordinates:
    """Coordinates of a located point, whichever variant it is."""
    if isinstance(point, RealPlace):
        return point.place.coordinates
    if isinstance(point, SyntheticPoint):
        return point.coordinates
    raise TypeError(f"Unknown located point variant: {type(point).__name__}")


def point_place(point) -> Optional[PlaceCandidate]:
    if isinstance(point, RealPlace):
        return point.place
    if isinstance(point, SyntheticPoint):
        return None
    raise TypeError(f"Unknown located point variant: {type(point).__name__}")


class DistanceRangeProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    min_km: float
    max_km: float
    search_radius_meters: int

    @property
    def midpoint_km(self) -> float:
        return (self.min_km + self.max_km) / 2


def get_range_profile(name: str) -> DistanceRangeProfile:
    """Look up a configured distance tier by name (local / nearby / far)."""
    if name not in config.DISTANCE_RANGES:
        raise ValueError(f"Unknown distance range: {name}")
    return DistanceRangeProfile(name=name, **config.DISTANCE_RANGES[name])


def next_wider_profile(profile: DistanceRangeProfile) -> Optional[DistanceRangeProfile]:
    """The next tier out, or None when `profile` is already the widest."""
    order = config.DISTANCE_RANGE_ORDER
    if profile.name not in order:
        return None
    index = order.index(profile.name)
    if index + 1 >= len(order):
        return None
    return get_range_profile(order[index + 1])


class DistanceResult(BaseModel):
    distance_km: float
    duration_minutes: int
    distance_meters: float
    duration_seconds: int
    is_estimate: bool = False


# --- VISITED PLACES ---
class VisitedPlaceRecord(BaseModel):
    place_id: str
    visited_at: datetime
    campaign_history: List[str] = []

    def with_visit(self, campaign_id: Optional[str], at: datetime) -> "VisitedPlaceRecord":
        """Append a visit; the record never loses earlier campaign IDs."""
        history = list(self.campaign_history)
        if campaign_id and (not history or history[-1] != campaign_id):
            history.append(campaign_id)
        return self.model_copy(update={
            'visited_at': max(at, self.visited_at),
            'campaign_history': history,
        })


# --- QUESTS & CAMPAIGNS ---
class QuestDraft(BaseModel):
    """Creative quest content returned by the campaign model for one location."""
    title: str
    narrative: str = ""
    objective: str
    secret_criteria: List[str] = []
    location_hint: str = ""
    difficulty: Difficulty = 'medium'
    media_type: MediaType = MediaType.PHOTO


class Quest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    narrative: str = ""
    objective: str
    secret_criteria: List[str] = []
    location_hint: str = ""
    difficulty: Difficulty = 'medium'
    media_type: MediaType = MediaType.PHOTO
    media_constraints: Optional[Dict[str, Any]] = None
    coordinates: Coordinates
    distance_from_previous_km: float
    estimated_minutes: int = 0
    place_name: Optional[str] = None
    place_types: List[str] = []
    # None disables the hard GPS gate for this quest
    gps_threshold_meters: Optional[float] = config.GPS_MAX_DISTANCE_METERS
    illustration_url: Optional[str] = None
    illustration_failed: bool = False

    def with_illustration(self, url: Optional[str]) -> "Quest":
        return self.model_copy(update={'illustration_url': url, 'illustration_failed': url is None})


class Campaign(BaseModel):
    id: str
    location: str = ""
    quests: List[Quest]
    current_quest_index: int = 0
    distance_range: str
    start_coordinates: Coordinates
    total_distance_km: float = 0.0
    estimated_total_minutes: int = 0

    @property
    def is_complete(self) -> bool:
        return self.current_quest_index >= len(self.quests)

    @property
    def current_quest(self) -> Optional[Quest]:
        if self.is_complete:
            return None
        return self.quests[self.current_quest_index]

    def advance(self) -> Optional[Quest]:
        """Move the cursor forward one quest and return the new current quest."""
        if self.is_complete:
            raise CampaignCompleteError(self.id)
        self.current_quest_index += 1
        return self.current_quest


# --- VERIFICATION ---
class SubmissionAttempt(BaseModel):
    quest_id: str
    media_type: MediaType
    gps_coordinates: Optional[Coordinates] = None
    gps_accuracy_meters: Optional[float] = None
    timestamp: datetime = Field(default_factory=now_utc)


class CriterionNote(BaseModel):
    criterion: str
    observation: str = ""
    passed: bool
    confidence: int = Field(default=0, ge=0, le=100)


class VerificationOutcome(BaseModel):
    accepted: bool
    confidence: int = Field(default=0, ge=0, le=100)
    feedback: str = ""
    rejection_kind: Optional[RejectionKind] = None
    distance_from_target_meters: Optional[float] = None
    per_criterion_notes: List[CriterionNote] = []
    appealable: bool = False


class GateResult(BaseModel):
    allowed: bool
    rejection_message: Optional[str] = None
    distance_meters: Optional[float] = None


class AppealContext(BaseModel):
    objective: str = ""
    criteria: List[str] = []
    user_explanation: str
    gps_confidence: float
    confidence_label: str
    strong_signal: bool
    distance_from_target_meters: Optional[float] = None
    original_feedback: str = ""
    failed_criteria: List[str] = []


class AppealDecision(BaseModel):
    success: bool
    feedback: str = ""
    reasoning: str = ""
    accepted_context: bool = False
    gps_was_helpful: bool = False


# --- SESSION CONTEXT ---
class QuestAttemptSummary(BaseModel):
    quest_id: str
    quest_title: str = ""
    media_type: MediaType
    attempts: int = Field(default=1, ge=1)
    final_success: bool
    feedback: List[str] = []
    criterion_notes: List[CriterionNote] = []
    time_spent_seconds: int = 0
    distance_from_target_meters: Optional[float] = None


class VoiceState(BaseModel):
    narrative_tone: str = "Friendly and encouraging guide with a sense of adventure"
    encouragement_level: EncouragementLevel = 'medium'
    reference_style: ReferenceStyle = 'brief'
    callback_phrases: List[str] = Field(default=[], max_length=3)
    earned_nickname: Optional[str] = None


class SessionProfile(BaseModel):
    campaign_id: str
    quest_history: List[QuestAttemptSummary] = []
    total_attempts: int = 0
    success_rate: float = 0.0
    average_attempts_per_quest: float = 0.0
    strongest_media_type: Optional[MediaType] = None
    weakest_media_type: Optional[MediaType] = None
    common_issue_tags: List[str] = []
    average_confidence: int = 0
    voice_state: VoiceState = Field(default_factory=VoiceState)


# --- JOURNEY & PERSISTENCE ---
class JourneyPoint(BaseModel):
    coordinates: Coordinates
    timestamp: datetime
    accuracy_meters: float
    quest_index: int


class JourneyStats(BaseModel):
    total_distance_km: float = 0.0
    start_time: datetime = Field(default_factory=now_utc)
    end_time: Optional[datetime] = None
    duration_minutes: int = 0
    path_points: List[JourneyPoint] = []
    quest_completion_times: List[datetime] = []


class StoredCampaign(BaseModel):
    campaign: Campaign
    completed_at: Optional[datetime] = None
    last_played_at: datetime = Field(default_factory=now_utc)
    completed_quests: List[str] = []
    verification_results: Dict[str, VerificationOutcome] = {}
    journey_stats: Optional[JourneyStats] = None
