import logging
from typing import Optional

import requests
from pydantic import ValidationError

from . import config
from .error_utils import GeocodingError
from .pydantic_models import Coordinates, GeocodedLocation

logger = logging.getLogger(__name__)

# Geocoding API statuses with a dedicated error code; anything else non-OK is GEOCODING_FAILED
STATUS_ERROR_CODES = {
    'ZERO_RESULTS': "LOCATION_NOT_FOUND",
    'OVER_QUERY_LIMIT': "GEOCODING_QUOTA_EXCEEDED",
    'REQUEST_DENIED': "GEOCODING_DENIED",
}


class Geocoder:
    """
    Turns a typed location ("Da Nang, Vietnam") into starting coordinates.

    Unlike the places and distance lookups there is nothing to fall back to,
    so every failure raises GeocodingError with a stable error code.
    """

    def __init__(self, api_key: Optional[str] = None, session=None, timeout: Optional[float] = None):
        self.api_key = config.GOOGLE_MAPS_API_KEY if api_key is None else api_key
        self.session = session or requests
        self.timeout = timeout or config.MAPS_REQUEST_TIMEOUT_SECONDS

    def geocode(self, address: str) -> GeocodedLocation:
        """
        Resolve `address` to its first geocoding match.

        Raises:
            GeocodingError: LOCATION_NOT_FOUND, GEOCODING_QUOTA_EXCEEDED,
                GEOCODING_DENIED or GEOCODING_FAILED
        """
        address = (address or "").strip()
        if not address:
            raise GeocodingError("LOCATION_NOT_FOUND", address, "A starting location is required")
        if not self.api_key:
            raise GeocodingError("GEOCODING_DENIED", address, "Maps API key is not configured")

        try:
            response = self.session.get(config.GEOCODE_URL, params={'address': address, 'key': self.api_key},
                                        timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Geocoding request for '{address}' failed: {e}")
            raise GeocodingError("GEOCODING_FAILED", address) from e

        if not isinstance(data, dict):
            logger.warning(f"Geocoding for '{address}' returned an unexpected body")
            raise GeocodingError("GEOCODING_FAILED", address)

        status = data.get('status')
        if status in STATUS_ERROR_CODES:
            logger.warning(f"Geocoding for '{address}' returned {status}")
            raise GeocodingError(STATUS_ERROR_CODES[status], address)

        results = data.get('results') or []
        if status != 'OK' or not isinstance(results, list) or not results:
            detail = data.get('error_message') or ''
            logger.warning(f"Geocoding for '{address}' failed with status {status}. {detail}")
            raise GeocodingError("GEOCODING_FAILED", address, f"Geocoding failed: {status}. {detail}".strip())

        try:
            first = results[0]
            location = first['geometry']['location']
            located = GeocodedLocation(
                name=address,
                coordinates=Coordinates(lat=location['lat'], lng=location['lng']),
                formatted_address=first.get('formatted_address') or address,
            )
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Geocoding result for '{address}' is malformed: {e}")
            raise GeocodingError("GEOCODING_FAILED", address) from e

        logger.info(f"Geocoded '{address}' to {located.coordinates.lat},{located.coordinates.lng}")
        return located
