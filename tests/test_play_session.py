import pytest

from conftest import at_km
from sidequest import gemini_service
from sidequest.error_utils import AdjudicationParseError, CampaignCompleteError, InvalidAppealError
from sidequest.pydantic_models import (
    AppealDecision, CriterionNote, MediaType, SubmissionAttempt, VerificationOutcome,
)
from sidequest.session_context import SessionContextTracker
from sidequest.storage import CampaignRepository, get_session_context_key
from sidequest.play_session import PlaySession


class FakeAdjudicator:
    """Stands in for gemini_service verification: replays outcomes and records what it was asked."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, media_bytes, mime_type, quest, **kwargs):
        self.calls.append((quest.id, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def accepted(feedback="Splendid!"):
    return VerificationOutcome(accepted=True, confidence=91, feedback=feedback,
                               per_criterion_notes=[CriterionNote(criterion="water visible", passed=True,
                                                                  confidence=91)])


def rejected(feedback="No basin in sight."):
    return VerificationOutcome(accepted=False, confidence=30, feedback=feedback, rejection_kind='criteria_not_met',
                               appealable=True,
                               per_criterion_notes=[CriterionNote(criterion="stone basin", passed=False,
                                                                  confidence=30)])


@pytest.fixture
def repository(store):
    return CampaignRepository(store)


@pytest.fixture
def session(two_quest_campaign, repository):
    return PlaySession(two_quest_campaign, repository=repository)


def _attempt(quest_id, east_km=0.5, north_km=0.0, accuracy=5.0, media_type=MediaType.PHOTO):
    return SubmissionAttempt(quest_id=quest_id, media_type=media_type, gps_coordinates=at_km(east_km, north_km),
                             gps_accuracy_meters=accuracy)


def test_out_of_range_submission_skips_adjudication(session, monkeypatch):
    adjudicator = FakeAdjudicator()
    monkeypatch.setattr(gemini_service, "verify_submission", adjudicator)

    outcome = session.submit(_attempt("q1", east_km=1.5), b"jpeg", "image/jpeg")

    assert not outcome.accepted
    assert outcome.rejection_kind == 'out_of_range'
    assert "You need to be within 200 m" in outcome.feedback
    assert outcome.distance_from_target_meters == pytest.approx(1000, rel=1e-3)
    assert adjudicator.calls == []
    assert session.tracker.profile.quest_history == []
    assert session.campaign.current_quest_index == 0


def test_accepted_submission_advances_and_saves(session, repository, monkeypatch):
    adjudicator = FakeAdjudicator(accepted())
    monkeypatch.setattr(gemini_service, "verify_submission", adjudicator)

    outcome = session.submit(_attempt("q1", east_km=0.51), b"jpeg", "image/jpeg", time_spent_seconds=90)

    assert outcome.accepted
    quest_id, kwargs = adjudicator.calls[0]
    assert quest_id == "q1"
    assert kwargs['gps_confidence'] > 0.8
    assert kwargs['distance_m'] == pytest.approx(10, abs=0.1)

    assert session.campaign.current_quest_index == 1
    stored = repository.load("camp-1")
    assert stored.campaign.current_quest_index == 1
    assert stored.completed_quests == ["q1"]
    assert session.tracker.previous_summary("q1").time_spent_seconds == 90


def test_session_hint_reaches_later_adjudications(session, monkeypatch):
    adjudicator = FakeAdjudicator(rejected(), accepted())
    monkeypatch.setattr(gemini_service, "verify_submission", adjudicator)

    session.submit(_attempt("q1"), b"jpeg", "image/jpeg")
    session.submit(_attempt("q1"), b"jpeg", "image/jpeg")

    assert adjudicator.calls[0][1]['session_hint'] == ""
    assert adjudicator.calls[1][1]['session_hint'].startswith("PLAYER CONTEXT: 1 quests attempted")
    summary = session.tracker.previous_summary("q1")
    assert summary.attempts == 2
    assert summary.final_success
    assert summary.feedback == ["No basin in sight.", "Splendid!"]


def test_parse_failure_leaves_state_untouched(session, repository, monkeypatch):
    monkeypatch.setattr(gemini_service, "verify_submission",
                        FakeAdjudicator(AdjudicationParseError("Verification failed, please try again")))

    with pytest.raises(AdjudicationParseError):
        session.submit(_attempt("q1"), b"jpeg", "image/jpeg")

    assert session.campaign.current_quest_index == 0
    assert session.tracker.profile.quest_history == []
    assert repository.load("camp-1") is None


def test_wrong_quest_is_refused(session):
    with pytest.raises(ValueError):
        session.submit(_attempt("q2"), b"jpeg", "image/jpeg")


def test_successful_appeal_advances(session, monkeypatch):
    monkeypatch.setattr(gemini_service, "verify_submission", FakeAdjudicator(rejected()))
    contexts = []

    def fake_appeal(context, media_bytes, mime_type, client=None):
        contexts.append(context)
        return AppealDecision(success=True, feedback="On reflection, yes!", gps_was_helpful=True)

    monkeypatch.setattr(gemini_service, "adjudicate_appeal", fake_appeal)

    session.submit(_attempt("q1"), b"jpeg", "image/jpeg")
    decision = session.appeal("q1", "The basin is hidden by leaves", b"jpeg", "image/jpeg")

    assert decision.success
    assert contexts[0].failed_criteria == ["stone basin"]
    assert contexts[0].strong_signal
    assert session.campaign.current_quest_index == 1
    assert session.verification_results["q1"].accepted
    summary = session.tracker.previous_summary("q1")
    assert summary.attempts == 1
    assert summary.final_success


def test_denied_appeal_keeps_quest(session, monkeypatch):
    monkeypatch.setattr(gemini_service, "verify_submission", FakeAdjudicator(rejected()))
    monkeypatch.setattr(gemini_service, "adjudicate_appeal",
                        lambda context, media_bytes, mime_type, client=None: AppealDecision(success=False))

    session.submit(_attempt("q1"), b"jpeg", "image/jpeg")
    decision = session.appeal("q1", "Trust me", b"jpeg", "image/jpeg")

    assert not decision.success
    assert session.campaign.current_quest_index == 0


def test_out_of_range_appeal_carries_measured_confidence(two_quest_campaign, repository, monkeypatch):
    strict = two_quest_campaign.quests[0].model_copy(update={'gps_threshold_meters': 60.0})
    campaign = two_quest_campaign.model_copy(update={'quests': [strict, two_quest_campaign.quests[1]]})
    session = PlaySession(campaign, repository=repository)
    contexts = []

    def fake_appeal(context, media_bytes, mime_type, client=None):
        contexts.append(context)
        return AppealDecision(success=False, feedback="Still too far")

    monkeypatch.setattr(gemini_service, "adjudicate_appeal", fake_appeal)

    outcome = session.submit(_attempt("q1", east_km=0.57, accuracy=0.0), b"jpeg", "image/jpeg")
    assert outcome.rejection_kind == 'out_of_range'

    session.appeal("q1", "My phone GPS drifts near tall buildings", b"jpeg", "image/jpeg")

    assert contexts[0].gps_confidence == pytest.approx(0.38, abs=0.01)
    assert contexts[0].confidence_label == 'uncertain'
    assert contexts[0].distance_from_target_meters == pytest.approx(70, rel=1e-3)


def test_appeal_without_rejection_is_invalid(session):
    with pytest.raises(InvalidAppealError):
        session.appeal("q1", "I was there", b"jpeg", "image/jpeg")


def test_finishing_archives_and_drops_context(session, repository, store, monkeypatch):
    monkeypatch.setattr(gemini_service, "verify_submission", FakeAdjudicator(accepted(), accepted()))

    session.submit(_attempt("q1"), b"jpeg", "image/jpeg")
    session.submit(_attempt("q2", north_km=0.5, media_type=MediaType.AUDIO), b"m4a", "audio/mp4")

    assert session.campaign.is_complete
    stored = repository.load("camp-1")
    assert stored.completed_at is not None
    assert stored.journey_stats.end_time is not None
    assert len(stored.journey_stats.quest_completion_times) == 2
    assert [s.campaign.id for s in repository.history()] == ["camp-1"]
    assert repository.get_current_campaign_id() is None
    assert store.get(get_session_context_key("camp-1")) is None

    with pytest.raises(CampaignCompleteError):
        session.submit(_attempt("q2"), b"jpeg", "image/jpeg")


def test_resume_restores_cursor_and_context(session, repository, monkeypatch):
    monkeypatch.setattr(gemini_service, "verify_submission", FakeAdjudicator(rejected(), accepted()))
    session.submit(_attempt("q1"), b"jpeg", "image/jpeg")
    session.submit(_attempt("q1"), b"jpeg", "image/jpeg")

    resumed = PlaySession.resume("camp-1", repository)

    assert resumed.campaign.current_quest_index == 1
    assert resumed.completed_quests == ["q1"]
    assert resumed.tracker.previous_summary("q1").attempts == 2
    assert isinstance(resumed.tracker, SessionContextTracker)
    assert PlaySession.resume("missing", repository) is None


def test_abandon_keeps_progress_in_history(session, repository, store):
    assert session.record_location(at_km(0.0, 0.0), accuracy_meters=8.0)
    assert not session.record_location(at_km(0.0, 0.1), accuracy_meters=75.0)
    assert session.record_location(at_km(0.0, 0.1), accuracy_meters=8.0)

    session.abandon()

    stored = repository.load("camp-1")
    assert stored.completed_at is None
    assert stored.campaign.current_quest_index == 0
    assert len(stored.journey_stats.path_points) == 2
    assert stored.journey_stats.total_distance_km == pytest.approx(0.1, rel=1e-2)
    assert [s.campaign.id for s in repository.history()] == ["camp-1"]
    assert repository.get_current_campaign_id() is None
    assert store.get(get_session_context_key("camp-1")) is None
