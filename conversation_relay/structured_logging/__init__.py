"""
Structured logging package for the conversation relay.

All imports should use explicit paths like
'from conversation_relay.structured_logging.enhanced_logging_config import get_logger'.

The package is named 'structured_logging' rather than 'logging' to avoid shadowing
the standard library module.
"""

__all__ = []
