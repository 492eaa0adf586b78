"""
Exception hierarchy for the conversation relay.

Relay operations themselves never raise on bad client input (they return
outcomes); these exceptions cover configuration and transport problems.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class ErrorContext:
    """Contextual information attached to relay errors."""

    connection_id: str | None = None
    user_id: str | None = None
    conversation_id: str | None = None
    event: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "conversation_id": self.conversation_id,
            "event": self.event,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class RelayError(Exception):
    """
    Base exception for all relay errors.

    Provides structured error handling with context and metadata.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now(UTC)
        self._already_logged = False

    def mark_logged(self) -> None:
        self._already_logged = True

    @property
    def already_logged(self) -> bool:
        return self._already_logged

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(RelayError):
    """Invalid or missing configuration."""


class RelayShuttingDownError(RelayError):
    """The relay is draining and refuses new work."""
