"""
Centralized error types and constants for the conversation relay.

Defines the error categories and the error frame sent back to a client when
strict validation is enabled.
"""

from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Standardized error types for consistent categorization."""

    # Validation Errors
    VALIDATION_ERROR = "validation_error"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_FORMAT = "invalid_format"
    MESSAGE_TOO_LARGE = "message_too_large"
    UNKNOWN_EVENT = "unknown_event"

    # Configuration and System
    CONFIGURATION_ERROR = "configuration_error"
    INTERNAL_ERROR = "internal_error"

    # Real-time Communication
    WEBSOCKET_ERROR = "websocket_error"
    MESSAGE_PROCESSING_ERROR = "message_processing_error"


class ErrorMessages:
    """Common error messages for consistent user experience."""

    MISSING_REQUIRED_FIELD = "Required field is missing"
    INVALID_FORMAT = "Invalid format provided"
    MESSAGE_TOO_LARGE = "Message is too large"
    UNKNOWN_EVENT = "Unsupported event"
    INTERNAL_ERROR = "An internal error occurred. Please try again later."


def create_websocket_error_response(
    error_type: ErrorType,
    message: str,
    user_friendly: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create the payload of an "error" event.

    Args:
        error_type: The type of error
        message: Technical error message
        user_friendly: User-friendly error message (optional)
        details: Additional error details (optional)

    Returns:
        Error payload dictionary
    """
    return {
        "error_type": error_type.value,
        "message": message,
        "user_friendly": user_friendly or message,
        "details": details or {},
    }
