import base64
import json
import logging
import time
from typing import Callable, List, Optional, Sequence

import redis
from google import genai
from google.genai import types
from pydantic import BaseModel, Field, ValidationError

from . import config
from .dependencies import ACTIVE_GEMINI_KEYS, get_redis_connection
from .error_utils import AdjudicationParseError, CampaignGenerationError, SideQuestError
from .gps_gate import confidence_label
from .pydantic_models import (
    AppealContext, AppealDecision, CriterionNote, DistanceRangeProfile, DistanceResult,
    Quest, QuestDraft, VerificationOutcome, point_coordinates, point_place,
)

logger = logging.getLogger(__name__)

GEMINI_KEY_INDEX_KEY = "current_gemini_key_index"


# --- RESPONSE SCHEMAS ---
class AdjudicationResponse(BaseModel):
    success: bool
    confidence: int = Field(ge=0, le=100)
    feedback: str
    appealable: bool = False
    criteria: List[CriterionNote] = []


class CampaignDraftResponse(BaseModel):
    quests: List[QuestDraft]


# --- CLIENT & KEY ROTATION ---
def _call_with_key_rotation(operation: Callable, client=None):
    """
    Run `operation(client)` against Gemini.

    With an explicit client the call is made once. Otherwise every active API
    key is tried in turn, starting from the last one that worked.
    """
    if client is not None:
        return operation(client)
    if not ACTIVE_GEMINI_KEYS:
        raise SideQuestError("UPSTREAM_UNAVAILABLE", "No Gemini API keys configured")

    redis_client = get_redis_connection()
    start_index = 0
    if redis_client:
        try:
            start_index = int(redis_client.get(GEMINI_KEY_INDEX_KEY) or 0)
        except (redis.exceptions.RedisError, ValueError) as e:
            logger.warning(f"Could not read Gemini key index: {e}")

    for i in range(len(ACTIVE_GEMINI_KEYS)):
        current_index = (start_index + i) % len(ACTIVE_GEMINI_KEYS)
        try:
            logger.info(f"--> Trying Gemini API Key #{current_index + 1}")
            result = operation(genai.Client(api_key=ACTIVE_GEMINI_KEYS[current_index]))
            if redis_client:
                try:
                    redis_client.set(GEMINI_KEY_INDEX_KEY, current_index)
                except redis.exceptions.RedisError as e:
                    logger.warning(f"Could not store Gemini key index: {e}")
            return result
        except Exception as e:
            logger.warning(f"Gemini API Key #{current_index + 1} failed: {e}")
            if i == len(ACTIVE_GEMINI_KEYS) - 1:
                logger.error(f"All Gemini API keys failed. Last error: {e}")
                raise


def _strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json") and cleaned.endswith("```"):
        cleaned = cleaned.removeprefix("```json").removesuffix("```").strip()
    elif cleaned.startswith("```") and cleaned.endswith("```"):
        cleaned = cleaned.removeprefix("```").removesuffix("```").strip()
    return cleaned


def parse_model_response(text: Optional[str], schema):
    """
    Strictly parse a JSON model reply into `schema`.

    Raises:
        AdjudicationParseError: Empty reply, invalid JSON or a schema mismatch
    """
    if not text or not text.strip():
        raise AdjudicationParseError("Empty response from Gemini", raw_response=text)
    try:
        data = json.loads(_strip_code_fences(text))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse AI response as JSON: {e}. Raw response: {text[:500]}")
        raise AdjudicationParseError("Verification failed, please try again", raw_response=text) from e
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.error(f"AI response did not match {schema.__name__}: {e}")
        raise AdjudicationParseError("Verification failed, please try again", raw_response=text) from e


def _json_config(schema, temperature: float = 0.2) -> types.GenerateContentConfig:
    return types.GenerateContentConfig(
        response_mime_type="application/json",
        response_schema=schema,
        temperature=temperature,
    )


# --- VERIFICATION ---
def build_verification_prompt(quest: Quest, gps_confidence: float, distance_m: Optional[float],
                              session_hint: str = "") -> str:
    lines = [
        f'Analyze this {quest.media_type.value.lower()} submission against the objective: "{quest.objective}".',
        f"Check each of these criteria: {', '.join(quest.secret_criteria) or 'none'}.",
    ]
    if distance_m is not None:
        lines.append(
            f"GPS: player is {distance_m:.0f}m from the target, confidence {gps_confidence:.2f} "
            f"({confidence_label(gps_confidence)})."
        )
    if session_hint:
        lines.append(session_hint)
    lines.append(
        "Respond with JSON: success (bool), confidence (0-100), feedback (witty comment, "
        "a hint if it failed), appealable (true if close but not quite right), and criteria "
        "(one entry per criterion with criterion, observation, passed, confidence)."
    )
    return "\n".join(lines)


def verify_submission(media_bytes: bytes, mime_type: str, quest: Quest, gps_confidence: float = 0.0,
                      distance_m: Optional[float] = None, session_hint: str = "",
                      client=None) -> VerificationOutcome:
    """
    Adjudicate one submission.

    Args:
        media_bytes: Raw photo, video or audio
        mime_type: MIME type of media_bytes
        quest: Quest being attempted
        gps_confidence: Soft GPS signal from gps_gate.confidence
        distance_m: Measured distance to the target, if known
        session_hint: Brief player context from the session tracker

    Returns:
        VerificationOutcome: accepted or rejected with criteria_not_met

    Raises:
        AdjudicationParseError: The model's answer could not be parsed
    """
    prompt = build_verification_prompt(quest, gps_confidence, distance_m, session_hint)

    def operation(c):
        return c.models.generate_content(
            model=config.VERIFICATION_MODEL,
            contents=[types.Part.from_bytes(data=media_bytes, mime_type=mime_type), prompt],
            config=_json_config(AdjudicationResponse, temperature=0.1),
        )

    response = _call_with_key_rotation(operation, client)
    result = parse_model_response(response.text, AdjudicationResponse)
    logger.info(f"AI verification for quest {quest.id}: success={result.success} confidence={result.confidence}")
    return VerificationOutcome(
        accepted=result.success,
        confidence=result.confidence,
        feedback=result.feedback,
        rejection_kind=None if result.success else 'criteria_not_met',
        distance_from_target_meters=distance_m,
        per_criterion_notes=result.criteria,
        appealable=False if result.success else result.appealable,
    )


# --- APPEALS ---
def build_appeal_prompt(context: AppealContext) -> str:
    lines = [
        "You are re-evaluating a submission after the player appealed the initial rejection.",
        f'ORIGINAL OBJECTIVE: "{context.objective}"',
        f"ORIGINAL CRITERIA: {', '.join(context.criteria)}",
    ]
    if context.failed_criteria:
        lines.append(f"CRITERIA THAT FAILED: {', '.join(context.failed_criteria)}")
    if context.original_feedback:
        lines.append(f'ORIGINAL FEEDBACK: "{context.original_feedback}"')
    lines.append(f'PLAYER\'S APPEAL: "{context.user_explanation}"')
    if context.distance_from_target_meters is not None:
        lines.append(f"GPS: player is {context.distance_from_target_meters:.0f}m from the target")
    lines.append(f"GPS confidence: {context.gps_confidence:.2f} ({context.confidence_label})")
    if context.strong_signal:
        lines.append("STRONG SIGNAL: the player is very close to the target.")
    lines.append(
        "Be lenient with minor real-world differences when GPS is strong, but reject a completely "
        "wrong subject. Respond with JSON: success, feedback, reasoning, accepted_context, gps_was_helpful."
    )
    return "\n".join(lines)


def adjudicate_appeal(context: AppealContext, media_bytes: bytes, mime_type: str, client=None) -> AppealDecision:
    """Second-chance adjudication. Raises AdjudicationParseError on unparsable output."""
    prompt = build_appeal_prompt(context)

    def operation(c):
        return c.models.generate_content(
            model=config.VERIFICATION_MODEL,
            contents=[types.Part.from_bytes(data=media_bytes, mime_type=mime_type), prompt],
            config=_json_config(AppealDecision, temperature=0.1),
        )

    response = _call_with_key_rotation(operation, client)
    decision = parse_model_response(response.text, AppealDecision)
    logger.info(f"Appeal decision: success={decision.success} gps_was_helpful={decision.gps_was_helpful}")
    return decision


# --- CAMPAIGN DRAFTING ---
def describe_location(index: int, point, leg: DistanceResult) -> str:
    coordinates = point_coordinates(point)
    place = point_place(point)
    header = f"Quest {index + 1}: {place.name}" if place else f"Quest {index + 1}: Unnamed spot"
    lines = [header]
    if place:
        lines.append(f"- Address: {place.address}")
        lines.append(f"- Types: {', '.join(place.types)}")
    lines.append(f"- Coordinates: {coordinates.lat:.4f}, {coordinates.lng:.4f}")
    lines.append(f"- Distance from previous: {leg.distance_km:.1f}km, ~{leg.duration_minutes} min walking")
    return "\n".join(lines)


def draft_quests(location_label: str, profile: DistanceRangeProfile, points: Sequence,
                 legs: Sequence[DistanceResult], client=None) -> List[QuestDraft]:
    """
    Ask the campaign model for one quest per resolved location.

    Raises:
        CampaignGenerationError: The reply was unusable or had the wrong number of quests
    """
    location_info = "\n\n".join(describe_location(i, p, leg) for i, (p, leg) in enumerate(zip(points, legs)))
    prompt = (
        f"You are an expert travel guide and game designer. Create a walking scavenger hunt "
        f"for a player in {location_label or 'their area'}.\n"
        f"Quest spacing: {profile.min_km}-{profile.max_km}km. Total quests: {len(points)}.\n\n"
        f"QUEST LOCATIONS:\n{location_info}\n\n"
        "For each location, in order, return a quest with title, narrative, objective (one sentence, "
        "something actually capturable there), secret_criteria, location_hint, difficulty "
        "(easy|medium|hard) and media_type (PHOTO|VIDEO|AUDIO). Respond with JSON: {\"quests\": [...]}"
    )

    def operation(c):
        return c.models.generate_content(
            model=config.CAMPAIGN_MODEL,
            contents=prompt,
            config=_json_config(CampaignDraftResponse, temperature=0.8),
        )

    response = _call_with_key_rotation(operation, client)
    try:
        drafts = parse_model_response(response.text, CampaignDraftResponse).quests
    except AdjudicationParseError as e:
        raise CampaignGenerationError("Failed to generate valid campaign JSON", e.details) from e
    if len(drafts) != len(points):
        raise CampaignGenerationError(
            f"Campaign model returned {len(drafts)} quests for {len(points)} locations",
            {"expected": len(points), "received": len(drafts)},
        )
    return drafts


# --- QUEST ILLUSTRATION ---
def _is_overload(error: Exception) -> bool:
    if getattr(error, 'code', None) == 503:
        return True
    message = str(error).lower()
    return '503' in message or 'overloaded' in message


def _image_from_response(response) -> str:
    for candidate in response.candidates or []:
        content = getattr(candidate, 'content', None)
        for part in (getattr(content, 'parts', None) or []):
            inline = getattr(part, 'inline_data', None)
            if inline is not None and inline.data:
                mime_type = inline.mime_type or 'image/png'
                return f"data:{mime_type};base64,{base64.b64encode(inline.data).decode('ascii')}"
    raise ValueError("Image response missing inline image data")


def generate_quest_illustration(quest: Quest, client=None, timeout: Optional[float] = None,
                                retries: Optional[int] = None, sleep: Callable[[float], None] = time.sleep) -> Optional[str]:
    """
    Pixel-art scene for a quest card, as a data URL.

    Each attempt is bounded by `timeout`; failures are retried with a short
    backoff (longer when the service reports overload). Returns None when every
    attempt fails so the caller can mark the quest and carry on.
    """
    timeout = timeout or config.ILLUSTRATION_TIMEOUT_SECONDS
    retries = config.ILLUSTRATION_RETRIES if retries is None else retries
    prompt = (
        "Create a 16-bit pixel art scene for this quest, landscape 16:9.\n"
        f"Quest: {quest.narrative or quest.objective}\n"
        f"Location: {quest.location_hint or quest.place_name or 'an outdoor spot'}\n"
        "Evocative adventure-game atmosphere, emerald greens and warm gold highlights, "
        "clear focal point. No text, letters or numbers anywhere in the image."
    )
    image_config = types.GenerateContentConfig(
        response_modalities=["IMAGE"],
        http_options=types.HttpOptions(timeout=int(timeout * 1000)),
    )

    def operation(c):
        response = c.models.generate_content(model=config.IMAGE_MODEL, contents=prompt, config=image_config)
        return _image_from_response(response)

    last_error = None
    for attempt in range(retries + 1):
        try:
            return _call_with_key_rotation(operation, client)
        except Exception as e:
            last_error = e
            logger.warning(f"Illustration attempt {attempt + 1}/{retries + 1} for quest {quest.id} failed: {e}")
        if attempt < retries:
            base = (config.ILLUSTRATION_OVERLOAD_BACKOFF_SECONDS if _is_overload(last_error)
                    else config.ILLUSTRATION_BACKOFF_SECONDS)
            sleep(base * (attempt + 1))

    logger.error(f"Illustration for quest {quest.id} failed after {retries + 1} attempts: {last_error}")
    return None
