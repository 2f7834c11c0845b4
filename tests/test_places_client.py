import requests

from conftest import FakeSession
from sidequest.places_client import FIELD_MASK, PlacesClient, normalize_place
from sidequest.pydantic_models import Coordinates, get_range_profile

CENTER = Coordinates(lat=48.8566, lng=2.3522)


def _raw(place_id, lat=48.857, lng=2.353, types=("museum", "tourist_attraction")):
    return {
        'id': place_id,
        'displayName': {'text': f"Site {place_id}", 'languageCode': 'en'},
        'formattedAddress': "1 Rue Exemple, Paris",
        'location': {'latitude': lat, 'longitude': lng},
        'types': list(types),
    }


def test_normalize_place():
    place = normalize_place(_raw("abc"))
    assert place.place_id == "abc"
    assert place.name == "Site abc"
    assert place.primary_type == "museum"
    assert place.coordinates == Coordinates(lat=48.857, lng=2.353)


def test_normalize_place_rejects_incomplete_results():
    assert normalize_place({'displayName': {'text': "No id"}, 'location': {'latitude': 1, 'longitude': 2}}) is None
    assert normalize_place({'id': "x", 'location': {'latitude': 1}}) is None
    assert normalize_place({'id': "x", 'location': {'latitude': 1, 'longitude': 2}}).name == "Unknown Place"


def test_search_sends_radius_and_field_mask():
    session = FakeSession(payload={'places': [_raw("a"), {'id': "broken"}, _raw("b")]})
    client = PlacesClient(api_key="key", session=session)

    places = client.search_nearby(CENTER, get_range_profile('nearby'))

    assert [p.place_id for p in places] == ["a", "b"]
    method, _, kwargs = session.calls[0]
    assert method == 'POST'
    assert kwargs['json']['locationRestriction']['circle']['radius'] == 3000.0
    assert kwargs['headers']['X-Goog-FieldMask'] == FIELD_MASK
    assert kwargs['headers']['X-Goog-Api-Key'] == "key"


def test_failures_return_empty_pool():
    local = get_range_profile('local')
    assert PlacesClient(api_key="", session=FakeSession(payload={})).search_nearby(CENTER, local) == []
    assert PlacesClient(api_key="key", session=FakeSession(status_code=500)).search_nearby(CENTER, local) == []
    timeout = FakeSession(error=requests.exceptions.Timeout("slow"))
    assert PlacesClient(api_key="key", session=timeout).search_nearby(CENTER, local) == []
    assert PlacesClient(api_key="key", session=FakeSession(payload={})).search_nearby(CENTER, local) == []


def test_unexpected_bodies_return_empty_pool():
    local = get_range_profile('local')
    for payload in (["oops"], None, {'places': "none"}):
        client = PlacesClient(api_key="key", session=FakeSession(payload=payload))
        assert client.search_nearby(CENTER, local) == []


def test_malformed_items_are_skipped():
    payload = {'places': [
        "not a place",
        {'id': "bad-loc", 'location': "somewhere"},
        {'id': "bad-lat", 'location': {'latitude': "north", 'longitude': 2.35}},
        {'id': "odd-name", 'displayName': "Plain string", 'location': {'latitude': 48.85, 'longitude': 2.35}},
        _raw("good"),
    ]}
    client = PlacesClient(api_key="key", session=FakeSession(payload=payload))

    places = client.search_nearby(CENTER, get_range_profile('local'))

    assert [p.place_id for p in places] == ["odd-name", "good"]
    assert places[0].name == "Unknown Place"
