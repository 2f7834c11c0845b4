"""
Shared clients for the SideQuest core.
Everything here is created lazily so importing the library never opens a
network connection.
"""

import logging
import os
import threading

import redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

from . import config

logger = logging.getLogger(__name__)

# --- Gemini API Keys ---
# Up to 4 keys for redundancy; calls rotate through them on failure.
GEMINI_API_KEYS = [os.environ.get(f"GEMINI_API_KEY_{i+1}") for i in range(4)]
ACTIVE_GEMINI_KEYS = [key for key in GEMINI_API_KEYS if key]
if not ACTIVE_GEMINI_KEYS and os.environ.get("GEMINI_API_KEY"):
    ACTIVE_GEMINI_KEYS = [os.environ.get("GEMINI_API_KEY")]

# --- Redis Connection Pool with Retry Logic ---
_redis_local = threading.local()


def get_redis_connection(url=None):
    """
    Get a thread-local Redis connection with retry logic.
    Returns None when Redis is unreachable so callers can skip persistence.
    """
    if not hasattr(_redis_local, 'connection'):
        try:
            retry = Retry(ExponentialBackoff(), retries=3)
            connection_pool = redis.ConnectionPool.from_url(
                url or config.REDIS_URL,
                decode_responses=True,
                retry=retry,
                max_connections=20,
                health_check_interval=30,
                socket_connect_timeout=5,
                socket_timeout=10
            )
            _redis_local.connection = redis.Redis(connection_pool=connection_pool)
            _redis_local.connection.ping()
            logger.info("Redis connection pool initialized successfully")
        except redis.exceptions.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            _redis_local.connection = None

    return _redis_local.connection
