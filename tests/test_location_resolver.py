import random

import pytest
from pydantic import ValidationError

from conftest import FakePlacesClient, make_place
from sidequest.geo import haversine_km
from sidequest.location_resolver import (
    QuestLocationResolver, StrategyResult, first_success, generate_synthetic_points,
)
from sidequest.pydantic_models import Coordinates, RealPlace, SyntheticPoint, get_range_profile

START = Coordinates(lat=0.0, lng=0.0)
LOCAL = get_range_profile('local')


def _local_pool(prefix="p"):
    return [
        make_place(f"{prefix}1", 0.4, 0.0),
        make_place(f"{prefix}2", -0.4, 0.0),
        make_place(f"{prefix}3", 0.0, 0.4),
        make_place(f"{prefix}4", 0.0, -0.4, types=("museum",)),
    ]


def _nearby_pool():
    return [
        make_place("n1", 1.5, 0.0),
        make_place("n2", -1.5, 0.0),
        make_place("n3", 0.0, 1.5),
        make_place("n4", 0.0, -1.5),
    ]


def test_primary_strategy_returns_real_places():
    client = FakePlacesClient({'local': _local_pool()})
    resolver = QuestLocationResolver(client, rng=random.Random(7))
    points = resolver.resolve(START, LOCAL, 3)

    assert resolver.last_strategy == 'primary'
    assert len(points) == 3
    assert all(isinstance(p, RealPlace) for p in points)
    assert len({p.place.place_id for p in points}) == 3
    assert client.calls == ['local']


def test_sparse_pool_escalates_to_wider_range():
    client = FakePlacesClient({
        'local': _local_pool()[:2],
        'nearby': _nearby_pool(),
    })
    resolver = QuestLocationResolver(client, rng=random.Random(1))
    points = resolver.resolve(START, LOCAL, 3)

    assert resolver.last_strategy == 'escalate_range'
    assert client.calls == ['local', 'nearby']
    assert all(p.place.place_id.startswith("n") for p in points)


def test_recently_visited_pool_uses_relaxed_novelty(ledger, days_ago):
    pool = _local_pool()
    ledger.record_visits([p.place_id for p in pool], campaign_id="camp-old", at=days_ago(3))
    client = FakePlacesClient({'local': pool})
    resolver = QuestLocationResolver(client, ledger=ledger, rng=random.Random(2))

    points = resolver.resolve(START, LOCAL, 3)

    assert resolver.last_strategy == 'relaxed_novelty'
    assert len(points) == 3
    assert all(isinstance(p, RealPlace) for p in points)
    # The original pool is fetched once and reused by the relaxed pass
    assert client.calls == ['local', 'nearby']


def test_empty_area_falls_back_to_synthetic_points():
    resolver = QuestLocationResolver(FakePlacesClient(), rng=random.Random(11))
    points = resolver.resolve(START, LOCAL, 4)

    assert resolver.last_strategy == 'synthetic'
    assert len(points) == 4
    assert all(isinstance(p, SyntheticPoint) for p in points)


def test_synthetic_points_stay_inside_the_band():
    profile = get_range_profile('nearby')
    points = generate_synthetic_points(START, profile, 25, random.Random(0))
    assert len(points) == 25
    for point in points:
        distance = haversine_km(START, point.coordinates)
        assert profile.min_km - 1e-6 <= distance <= profile.max_km + 1e-6


def test_zero_quests_resolves_nothing():
    resolver = QuestLocationResolver(FakePlacesClient({'local': _local_pool()}))
    assert resolver.resolve(START, LOCAL, 0) == []


# ── strategy chain ──────────────────────────────────────────


def test_first_success_survives_a_raising_strategy():
    def boom():
        raise RuntimeError("places quota exceeded")

    strategies = [
        ('boom', boom),
        ('thin', StrategyResult.insufficient),
        ('good', lambda: StrategyResult.success([1, 2])),
        ('never', lambda: pytest.fail("should not run after a success")),
    ]
    name, result, attempts = first_success(strategies)

    assert name == 'good'
    assert result.data == [1, 2]
    assert [n for n, _ in attempts] == ['boom', 'thin', 'good']
    assert attempts[0][1].status == 'error'
    assert "quota" in attempts[0][1].error


def test_first_success_reports_exhaustion():
    name, result, attempts = first_success([('a', StrategyResult.insufficient), ('b', StrategyResult.insufficient)])
    assert name is None
    assert not result.ok
    assert len(attempts) == 2


def test_strategy_status_is_a_closed_set():
    with pytest.raises(ValidationError):
        StrategyResult(status='maybe')
    assert StrategyResult.failed("down").status == 'error'
