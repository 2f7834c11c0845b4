"""
Standardized error handling for the SideQuest core.
Provides stable error codes and a structured failure shape the UI layer can
render without inspecting exception types.
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

# Standard error codes for consistent failure reporting
ERROR_CODES = {
    # Recovered locally, never surfaced as an exception
    "UPSTREAM_UNAVAILABLE": "An external provider is unavailable",
    "INSUFFICIENT_NOVELTY": "Not enough unvisited places in range",

    # Normal, expected rejections
    "OUT_OF_RANGE": "Submission is too far from the quest location",
    "LOCATION_NOT_FOUND": "Location not found. Try a city and country, like \"Da Nang, Vietnam\"",

    # Fatal to a single operation
    "ADJUDICATION_PARSE_FAILED": "Verification failed, please try again",
    "CAMPAIGN_GENERATION_FAILED": "Could not generate a campaign",
    "GEOCODING_QUOTA_EXCEEDED": "Maps quota exceeded, please try again later",
    "GEOCODING_DENIED": "Maps request denied, check the API key and that Geocoding is enabled",
    "GEOCODING_FAILED": "Could not look up that location",
    "INVALID_APPEAL": "Appeal cannot be processed",
    "CAMPAIGN_COMPLETE": "Campaign has no remaining quests",
    "STORAGE_ERROR": "Error accessing storage",
    "SERVER_ERROR": "Unexpected error",
}

# Codes the UI should offer a retry for
RETRYABLE_CODES = {
    "ADJUDICATION_PARSE_FAILED", "CAMPAIGN_GENERATION_FAILED", "STORAGE_ERROR",
    "GEOCODING_QUOTA_EXCEEDED", "GEOCODING_FAILED",
}


class SideQuestError(Exception):
    """Base error carrying one of the standard ERROR_CODES."""

    def __init__(self, error_code: str, message: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        if error_code not in ERROR_CODES:
            logger.warning(f"Unknown error code used: {error_code}")
            error_code = "SERVER_ERROR"
        self.error_code = error_code
        self.message = message or ERROR_CODES[error_code]
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.error_code in RETRYABLE_CODES

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        return data


class AdjudicationParseError(SideQuestError):
    """The adjudication model returned output that could not be parsed."""

    def __init__(self, message: Optional[str] = None, raw_response: Optional[str] = None):
        details = {"raw_response": raw_response[:500]} if raw_response else None
        super().__init__("ADJUDICATION_PARSE_FAILED", message, details)
        self.raw_response = raw_response


class CampaignGenerationError(SideQuestError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__("CAMPAIGN_GENERATION_FAILED", message, details)


class GeocodingError(SideQuestError):
    def __init__(self, error_code: str, address: str, message: Optional[str] = None):
        super().__init__(error_code, message, {"address": address})
        self.address = address


class InvalidAppealError(SideQuestError, ValueError):
    def __init__(self, message: Optional[str] = None):
        super().__init__("INVALID_APPEAL", message)


class CampaignCompleteError(SideQuestError):
    def __init__(self, campaign_id: str):
        super().__init__("CAMPAIGN_COMPLETE", details={"campaign_id": campaign_id})


def describe_failure(e: Exception, context: str = "operation") -> Dict[str, Any]:
    """
    Convert any exception into the structured failure dict shown to the player.

    Args:
        e: The exception that occurred
        context: Context information for logging

    Returns:
        Dict with error_code, message and retryable flag
    """
    if isinstance(e, SideQuestError):
        logger.error(f"SideQuest error in {context} [{e.error_code}]: {e.message}")
        return e.to_dict()

    error_type = type(e).__name__
    logger.error(f"Unexpected error in {context}: {error_type} - {e}", exc_info=True)
    return {
        "error_code": "SERVER_ERROR",
        "message": ERROR_CODES["SERVER_ERROR"],
        "retryable": False,
        "details": {"error_type": error_type, "error_message": str(e)},
    }
