import pytest

from sidequest.appeal_processor import reconsider
from sidequest.error_utils import InvalidAppealError
from sidequest.pydantic_models import CriterionNote, VerificationOutcome


def _rejection(**overrides):
    values = dict(
        accepted=False,
        confidence=35,
        feedback="The basin isn't visible in this photo.",
        rejection_kind='criteria_not_met',
        distance_from_target_meters=22.0,
        per_criterion_notes=[
            CriterionNote(criterion="water visible", passed=True, confidence=80),
            CriterionNote(criterion="stone basin", passed=False, confidence=30),
        ],
    )
    values.update(overrides)
    return VerificationOutcome(**values)


def test_context_carries_quest_rejection_and_gps(two_quest_campaign):
    quest = two_quest_campaign.quests[0]
    context = reconsider(_rejection(), "  The basin is behind the railing on the left  ", 0.92, quest)

    assert context.objective == quest.objective
    assert context.criteria == ["water visible", "stone basin"]
    assert context.user_explanation == "The basin is behind the railing on the left"
    assert context.failed_criteria == ["stone basin"]
    assert context.original_feedback == "The basin isn't visible in this photo."
    assert context.distance_from_target_meters == 22.0
    assert context.confidence_label == 'excellent'
    assert context.strong_signal


def test_confidence_is_clamped():
    assert reconsider(_rejection(), "it is there", 1.7).gps_confidence == 1.0
    low = reconsider(_rejection(), "it is there", -0.3)
    assert low.gps_confidence == 0.0
    assert not low.strong_signal


def test_same_inputs_same_context(two_quest_campaign):
    quest = two_quest_campaign.quests[0]
    first = reconsider(_rejection(), "look again", 0.4, quest)
    second = reconsider(_rejection(), "look again", 0.4, quest)
    assert first == second


def test_accepted_outcome_cannot_be_appealed():
    with pytest.raises(InvalidAppealError) as exc_info:
        reconsider(_rejection(accepted=True, rejection_kind=None), "please", 0.5)
    assert exc_info.value.error_code == "INVALID_APPEAL"
    assert isinstance(exc_info.value, ValueError)


@pytest.mark.parametrize("explanation", ["", "   ", None])
def test_blank_explanation_is_rejected(explanation):
    with pytest.raises(InvalidAppealError):
        reconsider(_rejection(), explanation, 0.5)
