"""
Context management utilities for structured logging.

Connection handlers bind the connection id (and the user id once known) so
every log entry emitted while handling that socket carries them.
"""

import uuid
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, unbind_contextvars


def bind_connection_context(
    connection_id: str,
    correlation_id: str | None = None,
    user_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Bind connection context to the current logging context.

    Args:
        connection_id: Relay-assigned connection ID
        correlation_id: Correlation ID, generated when omitted
        user_id: Application user identity if already known
        **kwargs: Additional context variables
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context_vars = {
        "connection_id": connection_id,
        "correlation_id": correlation_id,
        "user_id": user_id,
        **kwargs,
    }
    bind_contextvars(**{k: v for k, v in context_vars.items() if v is not None})


def bind_user_context(user_id: str) -> None:
    """Attach the identified user to the current connection context."""
    bind_contextvars(user_id=user_id)


def unbind_user_context() -> None:
    unbind_contextvars("user_id")


def clear_connection_context() -> None:
    """Clear the current connection context from logging."""
    clear_contextvars()


def get_current_context() -> dict[str, Any]:
    """Get the current logging context."""
    try:
        return structlog.contextvars.get_contextvars()
    except (AttributeError, KeyError):
        return {}
