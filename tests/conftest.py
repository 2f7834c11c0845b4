from datetime import timedelta

import pytest
import requests

from sidequest.pydantic_models import Campaign, Coordinates, MediaType, PlaceCandidate, Quest
from sidequest.storage import MemoryStore
from sidequest.timezone_utils import now_utc
from sidequest.visited_ledger import VisitedPlaceLedger

# Degrees per kilometre along a meridian (and along the equator) for a 6371 km sphere
DEG_PER_KM = 1 / 111.19492664455873


def at_km(east_km, north_km, origin=None):
    """Coordinates offset from `origin` (default 0,0) by small km distances near the equator."""
    origin = origin or Coordinates(lat=0.0, lng=0.0)
    return Coordinates(lat=origin.lat + north_km * DEG_PER_KM, lng=origin.lng + east_km * DEG_PER_KM)


def make_place(place_id, east_km, north_km, types=("park",), name=None):
    return PlaceCandidate(
        place_id=place_id,
        name=name or f"Place {place_id}",
        address=f"{place_id} Example Street",
        coordinates=at_km(east_km, north_km),
        types=list(types),
    )


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    """Stands in for the requests module: records calls, returns a canned payload or raises."""

    def __init__(self, payload=None, error=None, status_code=200):
        self.payload = payload
        self.error = error
        self.status_code = status_code
        self.calls = []

    def _respond(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.payload, self.status_code)

    def get(self, url, **kwargs):
        return self._respond('GET', url, kwargs)

    def post(self, url, **kwargs):
        return self._respond('POST', url, kwargs)


class FakePlacesClient:
    """Returns a fixed candidate pool per range name."""

    def __init__(self, pools=None):
        self.pools = pools or {}
        self.calls = []

    def search_nearby(self, center, profile):
        self.calls.append(profile.name)
        return list(self.pools.get(profile.name, []))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store):
    return VisitedPlaceLedger(store)


@pytest.fixture
def days_ago():
    now = now_utc()

    def _days_ago(days):
        return now - timedelta(days=days)
    return _days_ago


@pytest.fixture
def two_quest_campaign():
    quests = [
        Quest(id="q1", title="Fountain Finder", objective="Photograph the fountain",
              secret_criteria=["water visible", "stone basin"], media_type=MediaType.PHOTO,
              coordinates=at_km(0.5, 0.0), distance_from_previous_km=0.6),
        Quest(id="q2", title="Bell Tower", objective="Record the bells",
              secret_criteria=["bell sound audible"], media_type=MediaType.AUDIO,
              coordinates=at_km(0.5, 0.5), distance_from_previous_km=0.6),
    ]
    return Campaign(id="camp-1", location="Test Town", quests=quests, distance_range="local",
                    start_coordinates=Coordinates(lat=0.0, lng=0.0), total_distance_km=1.2,
                    estimated_total_minutes=14)
