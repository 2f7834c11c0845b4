import logging
from typing import Optional

from .error_utils import InvalidAppealError
from .gps_gate import confidence_label, is_strong_signal
from .pydantic_models import AppealContext, Quest, VerificationOutcome

logger = logging.getLogger(__name__)


def reconsider(original_rejection: VerificationOutcome, user_explanation: str,
               gps_confidence: float, quest: Optional[Quest] = None) -> AppealContext:
    """
    Package a rejected submission for re-evaluation.

    Does not decide the appeal; it only assembles the context the
    adjudicator sees, deterministically.

    Args:
        original_rejection: The outcome being appealed
        user_explanation: Player's free-text reason the rejection was wrong
        gps_confidence: Score from gps_gate.confidence for the original submission
        quest: Quest whose objective and criteria are re-checked

    Returns:
        AppealContext: Everything the appeal adjudication needs

    Raises:
        InvalidAppealError: The outcome was accepted or the explanation is blank
    """
    if original_rejection.accepted:
        raise InvalidAppealError("Only rejected submissions can be appealed")
    if not user_explanation or not user_explanation.strip():
        raise InvalidAppealError("An appeal needs an explanation")

    gps_confidence = min(max(gps_confidence, 0.0), 1.0)
    failed = [note.criterion for note in original_rejection.per_criterion_notes if not note.passed]

    return AppealContext(
        objective=quest.objective if quest else "",
        criteria=list(quest.secret_criteria) if quest else [],
        user_explanation=user_explanation.strip(),
        gps_confidence=gps_confidence,
        confidence_label=confidence_label(gps_confidence),
        strong_signal=is_strong_signal(gps_confidence),
        distance_from_target_meters=original_rejection.distance_from_target_meters,
        original_feedback=original_rejection.feedback,
        failed_criteria=failed,
    )
