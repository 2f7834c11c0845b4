import logging
from typing import List, Optional

import requests
from pydantic import ValidationError

from . import config
from .pydantic_models import Coordinates, DistanceRangeProfile, PlaceCandidate

logger = logging.getLogger(__name__)

FIELD_MASK = 'places.id,places.displayName,places.formattedAddress,places.location,places.types'


def normalize_place(raw: dict) -> Optional[PlaceCandidate]:
    """Maps one Places API (New) result onto a PlaceCandidate; None if it has no id or location."""
    if not isinstance(raw, dict):
        return None
    place_id = raw.get('id')
    location = raw.get('location') or {}
    if not place_id or not isinstance(location, dict) or 'latitude' not in location or 'longitude' not in location:
        return None
    display_name = raw.get('displayName')
    name = display_name.get('text') if isinstance(display_name, dict) else None
    try:
        return PlaceCandidate(
            place_id=place_id,
            name=name or 'Unknown Place',
            address=raw.get('formattedAddress') or '',
            coordinates=Coordinates(lat=location['latitude'], lng=location['longitude']),
            types=list(raw.get('types') or []),
        )
    except (TypeError, ValidationError) as e:
        logger.debug(f"Skipping malformed place {place_id}: {e}")
        return None


class PlacesClient:
    """Nearby points of interest from Google Places. Failures return an empty pool."""

    def __init__(self, api_key: Optional[str] = None, session=None, timeout: Optional[float] = None,
                 included_types: Optional[List[str]] = None):
        self.api_key = config.GOOGLE_MAPS_API_KEY if api_key is None else api_key
        self.session = session or requests
        self.timeout = timeout or config.MAPS_REQUEST_TIMEOUT_SECONDS
        self.included_types = included_types or config.PLACE_TYPES

    def search_nearby(self, center: Coordinates, profile: DistanceRangeProfile) -> List[PlaceCandidate]:
        if not self.api_key:
            logger.warning("No maps API key configured; places lookup skipped")
            return []

        body = {
            'locationRestriction': {
                'circle': {
                    'center': {'latitude': center.lat, 'longitude': center.lng},
                    'radius': float(profile.search_radius_meters),
                }
            },
            'includedTypes': self.included_types,
            'maxResultCount': config.PLACES_MAX_RESULTS,
            'languageCode': 'en',
        }
        headers = {
            'Content-Type': 'application/json',
            'X-Goog-Api-Key': self.api_key,
            'X-Goog-FieldMask': FIELD_MASK,
        }
        try:
            response = self.session.post(config.PLACES_SEARCH_URL, json=body, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Places lookup failed for {profile.name} range: {e}")
            return []

        if not isinstance(data, dict) or not isinstance(data.get('places') or [], list):
            logger.warning(f"Places lookup for {profile.name} range returned an unexpected body")
            return []

        candidates = []
        for raw in data.get('places') or []:
            candidate = normalize_place(raw)
            if candidate is not None:
                candidates.append(candidate)
        logger.info(f"Places lookup returned {len(candidates)} candidates within {profile.search_radius_meters}m")
        return candidates
