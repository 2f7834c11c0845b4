import pytest

from conftest import at_km
from sidequest.geo import haversine_m
from sidequest.gps_gate import check_threshold, confidence, confidence_label, format_rejection, is_strong_signal
from sidequest.pydantic_models import Coordinates

ORIGIN = Coordinates(lat=0.0, lng=0.0)


# ── confidence curve ────────────────────────────────────────


@pytest.mark.parametrize("distance_m,expected", [
    (0, 1.0),
    (15, 1.0),
    (30, 0.8),
    (50, 0.5),
    (100, 0.2),
    (300, 0.0),
    (5000, 0.0),
])
def test_confidence_anchor_points(distance_m, expected):
    assert confidence(distance_m) == pytest.approx(expected)


def test_confidence_never_increases_with_distance():
    values = [confidence(d) for d in range(0, 400, 3)]
    assert all(0.0 <= v <= 1.0 for v in values)
    assert all(a >= b for a, b in zip(values, values[1:]))


def test_poor_accuracy_counts_against_the_player():
    assert confidence(10, 20) == pytest.approx(confidence(20, 0))
    assert confidence(40, 60) < confidence(40, 0)


def test_unknown_distance_has_no_confidence():
    assert confidence(None) == 0.0


def test_labels_and_strong_signal():
    assert confidence_label(0.95) == 'excellent'
    assert confidence_label(0.75) == 'good'
    assert confidence_label(0.55) == 'fair'
    assert confidence_label(0.35) == 'uncertain'
    assert confidence_label(0.1) == 'unreliable'
    assert is_strong_signal(0.81)
    assert not is_strong_signal(0.8)


# ── hard threshold ──────────────────────────────────────────


def test_just_inside_passes_and_just_outside_rejects():
    inside = check_threshold(at_km(0, 0.199), ORIGIN)
    outside = check_threshold(at_km(0, 0.201), ORIGIN)
    assert inside.allowed
    assert inside.distance_meters == pytest.approx(199, abs=0.01)
    assert not outside.allowed
    assert outside.rejection_message


def test_threshold_equal_to_distance_passes():
    user = at_km(0.12, 0.05)
    distance = haversine_m(user, ORIGIN)
    assert check_threshold(user, ORIGIN, distance).allowed


def test_rejection_message_states_distance_and_limit():
    result = check_threshold(at_km(0, 0.25), ORIGIN)
    assert not result.allowed
    assert f"{result.distance_meters / 1000:.1f} km away" in result.rejection_message
    assert "within 200 m" in result.rejection_message


def test_disabled_gate_always_passes():
    far = at_km(0, 50)
    result = check_threshold(far, ORIGIN, None)
    assert result.allowed
    assert result.rejection_message is None
    assert check_threshold(None, None, None).allowed
    assert check_threshold(far, None, None).allowed


def test_missing_coordinates_pass():
    assert check_threshold(None, ORIGIN).allowed
    assert check_threshold(ORIGIN, None).allowed
    assert check_threshold(None, None).allowed


def test_short_range_rejection_shows_metres():
    message = format_rejection(70.4, 60)
    assert message.startswith("You are 0.1 km away from the quest location (70 m).")
    assert "within 60 m (0.1 km)" in message

    far = format_rejection(1500, 200)
    assert "1.5 km away from the quest location." in far
    assert "(1500 m)" not in far
