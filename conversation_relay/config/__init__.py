"""
Configuration module for the conversation relay.

Type-safe, validated configuration using Pydantic BaseSettings.

Usage:
    from conversation_relay.config import get_config

    config = get_config()
    logger.info("Configuration loaded", host=config.server.host, port=config.server.port)
"""

import sys
import threading
from functools import lru_cache
from os import getenv

from pydantic import ValidationError

from ..exceptions import ConfigurationError
from .models import AppConfig

__all__ = ["get_config", "load_config", "reset_config", "AppConfig"]

_config_instance = None
_config_lock = threading.Lock()


def _is_test_mode() -> bool:
    """Detect pytest so tests always see a fresh config built from their environment."""
    if "pytest" in sys.modules:
        return True
    return bool(getenv("PYTEST_CURRENT_TEST"))


@lru_cache(maxsize=1)
def _get_config_cached() -> AppConfig:
    """Production config loader with caching."""
    global _config_instance
    with _config_lock:
        if _config_instance is None:
            _config_instance = AppConfig()
    return _config_instance


def get_config() -> AppConfig:
    """
    Get application configuration (singleton in production, fresh in tests).

    Returns:
        AppConfig: The application configuration

    Raises:
        ValidationError: If configuration is invalid
    """
    if _is_test_mode():
        return AppConfig()
    return _get_config_cached()


def load_config() -> AppConfig:
    """
    Get the configuration for process startup.

    Raises:
        ConfigurationError: If the environment does not describe a valid configuration
    """
    try:
        return get_config()
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        raise ConfigurationError("Invalid relay configuration", details={"errors": errors}) from e


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config_instance
    with _config_lock:
        _config_instance = None
    _get_config_cached.cache_clear()
