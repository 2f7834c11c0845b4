# FILE: sidequest/config.py

import os
from dotenv import load_dotenv

# --- SETUP & CONFIG ---
# Values are read once at import. Every tunable has a default so the library
# works without a .env file; deployments override through the environment.
load_dotenv()


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


# --- External services ---
GOOGLE_MAPS_API_KEY = os.environ.get("GOOGLE_MAPS_API_KEY", "")
PLACES_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
MAPS_REQUEST_TIMEOUT_SECONDS = _env_float("MAPS_REQUEST_TIMEOUT_SECONDS", 10.0)
PLACES_MAX_RESULTS = _env_int("PLACES_MAX_RESULTS", 20)

# Place types requested from the places lookup ("Table A" primary types).
PLACE_TYPES = [
    'tourist_attraction',
    'park',
    'museum',
    'art_gallery',
    'church',
    'hindu_temple',
    'mosque',
    'synagogue',
    'shopping_mall',
    'cafe',
    'stadium',
    'cultural_center',
    'historical_landmark',
    'monument',
    'performing_arts_theater',
    'visitor_center',
    'zoo',
]

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

CAMPAIGN_MODEL = os.environ.get("SIDEQUEST_CAMPAIGN_MODEL", "gemini-2.5-flash")
VERIFICATION_MODEL = os.environ.get("SIDEQUEST_VERIFICATION_MODEL", "gemini-2.5-pro")
IMAGE_MODEL = os.environ.get("SIDEQUEST_IMAGE_MODEL", "gemini-2.5-flash-image")

# --- Distance estimation ---
EARTH_RADIUS_KM = 6371.0
WALKING_SPEED_KMH = _env_float("WALKING_SPEED_KMH", 5.0)
ROUTE_INFLATION_FACTOR = _env_float("ROUTE_INFLATION_FACTOR", 1.2)
DISTANCE_FANOUT_WORKERS = _env_int("DISTANCE_FANOUT_WORKERS", 8)

# --- Distance range tiers (km, km, metres), narrowest first ---
DISTANCE_RANGES = {
    'local': {'min_km': 0.2, 'max_km': 1.0, 'search_radius_meters': 1000},
    'nearby': {'min_km': 0.5, 'max_km': 3.0, 'search_radius_meters': 3000},
    'far': {'min_km': 3.0, 'max_km': 10.0, 'search_radius_meters': 10000},
}
DISTANCE_RANGE_ORDER = ['local', 'nearby', 'far']

# --- Place selection ---
SPACING_WEIGHT = _env_float("SPACING_WEIGHT", 0.5)
RADIUS_WEIGHT = _env_float("RADIUS_WEIGHT", 0.2)
DIVERSITY_BONUS = _env_float("DIVERSITY_BONUS", 0.3)

# Novelty bands: (max age in days, multiplier). Must be monotonic.
NOVELTY_EXCLUSION_DAYS = _env_int("NOVELTY_EXCLUSION_DAYS", 7)
NOVELTY_EXCLUSION_CAMPAIGNS = _env_int("NOVELTY_EXCLUSION_CAMPAIGNS", 3)
NOVELTY_BANDS = [(14, 0.2), (30, 0.5)]
NOVELTY_OLDER_MULTIPLIER = _env_float("NOVELTY_OLDER_MULTIPLIER", 0.7)
MIN_UNVISITED_RATIO = _env_float("MIN_UNVISITED_RATIO", 0.3)
RELAXED_EXCLUSION_DAYS = _env_int("RELAXED_EXCLUSION_DAYS", 2)

# --- GPS verification ---
GPS_MAX_DISTANCE_METERS = _env_float("GPS_MAX_DISTANCE_METERS", 200.0)
GPS_ACCURACY_PENALTY = _env_float("GPS_ACCURACY_PENALTY", 0.5)
GPS_STRONG_SIGNAL_THRESHOLD = 0.8

# --- Quest illustration ---
ILLUSTRATION_TIMEOUT_SECONDS = _env_float("ILLUSTRATION_TIMEOUT_SECONDS", 30.0)
ILLUSTRATION_RETRIES = _env_int("ILLUSTRATION_RETRIES", 1)
ILLUSTRATION_BACKOFF_SECONDS = _env_float("ILLUSTRATION_BACKOFF_SECONDS", 2.0)
ILLUSTRATION_OVERLOAD_BACKOFF_SECONDS = _env_float("ILLUSTRATION_OVERLOAD_BACKOFF_SECONDS", 5.0)

# --- Persistence ---
MAX_CAMPAIGN_HISTORY = _env_int("MAX_CAMPAIGN_HISTORY", 10)

# --- Journey tracking ---
JOURNEY_MIN_DISTANCE_METERS = 20
JOURNEY_MIN_SECONDS = 30
JOURNEY_MAX_ACCURACY_METERS = 50
