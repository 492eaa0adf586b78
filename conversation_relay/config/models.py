"""
Pydantic-based configuration models for the conversation relay.

Every setting comes from the environment (or a .env file). The three historical
relay variants (development, production, embedded in an API server) differ only
in these values: allowed origins, presence broadcasts, send confirmations and
validation strictness.
"""

import json
from typing import Annotated, Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_FRONTEND_URL = "http://localhost:5173"


def _parse_env_list(candidate: Any) -> list[str]:
    """Parse a value from the environment as JSON list or CSV."""
    if candidate is None:
        return []
    if isinstance(candidate, (list, tuple, set)):
        return [str(item).strip() for item in candidate if str(item).strip()]
    s = str(candidate).strip()
    if not s:
        return []
    try:
        loaded = json.loads(s)
        if isinstance(loaded, list):
            return [str(item).strip() for item in loaded if str(item).strip()]
    except json.JSONDecodeError:
        pass
    return [item.strip() for item in s.split(",") if item.strip()]


class ServerConfig(BaseSettings):
    """Server network configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(
        default=3001,
        validation_alias=AliasChoices("port", "websocket_port", "server_port"),
        description="Listen port (PORT, WEBSOCKET_PORT or SERVER_PORT)",
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1024 <= v <= 65535:
            logger.error("Invalid server port", port=v, valid_range="1024-65535")
            raise ValueError("Port must be between 1024 and 65535")
        return v

    model_config = {
        "env_prefix": "SERVER_",
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
        "populate_by_name": True,
    }


class CORSConfig(BaseSettings):
    """Cross-origin configuration for HTTP routes and WebSocket handshakes."""

    allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [DEFAULT_FRONTEND_URL],
        validation_alias=AliasChoices("allow_origins", "cors_allow_origins", "frontend_url"),
        description="Origins permitted to reach the relay ('*' allows any)",
    )
    allow_credentials: bool = Field(default=True, description="Whether credentialed requests are accepted")
    allow_methods: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="HTTP methods permitted by CORS responses",
    )
    allow_headers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["*"],
        description="Request headers permitted by CORS responses",
    )
    max_age: int = Field(default=600, description="Seconds browsers may cache CORS preflight responses")

    model_config = {
        "env_prefix": "CORS_",
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
        "populate_by_name": True,
    }

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: object) -> list[str]:
        origins = _parse_env_list(value)
        if not origins:
            raise ValueError("At least one allowed origin must be provided")
        return [origin.rstrip("/") if origin != "*" else origin for origin in origins]

    @field_validator("allow_methods", mode="before")
    @classmethod
    def parse_allow_methods(cls, value: object) -> list[str]:
        return [method.upper() for method in _parse_env_list(value)]

    @field_validator("allow_headers", mode="before")
    @classmethod
    def parse_allow_headers(cls, value: object) -> list[str]:
        return _parse_env_list(value)

    @field_validator("max_age")
    @classmethod
    def validate_max_age(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_age must be non-negative")
        return value

    @property
    def allows_any_origin(self) -> bool:
        return "*" in self.allow_origins

    def is_origin_allowed(self, origin: str | None) -> bool:
        """
        Check a WebSocket handshake Origin header against the allow list.

        Non-browser clients send no Origin header and are always accepted.
        """
        if origin is None or self.allows_any_origin:
            return True
        return origin.rstrip("/") in self.allow_origins


class HeartbeatConfig(BaseSettings):
    """Transport keep-alive settings, handed to uvicorn's WebSocket ping."""

    interval_ms: int = Field(default=25000, description="Ping interval in milliseconds")
    timeout_ms: int = Field(default=60000, description="Pong timeout in milliseconds")

    model_config = {"env_prefix": "HEARTBEAT_", "env_file": ".env", "case_sensitive": False, "extra": "ignore"}

    @field_validator("interval_ms", "timeout_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Heartbeat values must be positive")
        return v

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class RelayConfig(BaseSettings):
    """Relay behaviour switches."""

    strict_validation: bool = Field(
        default=False,
        description="Reply to malformed events with an error frame instead of dropping them",
    )
    broadcast_presence: bool = Field(default=True, description="Broadcast user_online/user_offline events")
    send_confirmation: bool = Field(default=True, description="Send message_sent back to the sender")
    max_message_size: int = Field(default=65536, description="Maximum inbound frame size in bytes")
    shutdown_grace_seconds: float = Field(
        default=5.0, description="Seconds to wait for in-flight fan-outs during shutdown"
    )

    model_config = {"env_prefix": "RELAY_", "env_file": ".env", "case_sensitive": False, "extra": "ignore"}

    @field_validator("max_message_size")
    @classmethod
    def validate_max_message_size(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("max_message_size must be at least 1024 bytes")
        return v

    @field_validator("shutdown_grace_seconds")
    @classmethod
    def validate_grace(cls, v: float) -> float:
        if v < 0:
            raise ValueError("shutdown_grace_seconds must be non-negative")
        return v


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(default="local", description="Logging environment")
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="console", description="Log format")
    disable_logging: bool = Field(default=False, description="Silence everything below CRITICAL")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate logging environment."""
        valid_environments = ["local", "unit_test", "e2e_test", "production"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["console", "json"]
        if v not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}, got '{v}'")
        return v

    model_config = {"env_prefix": "LOGGING_", "env_file": ".env", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        return {
            "environment": self.environment,
            "level": self.level,
            "format": self.format,
            "disable_logging": self.disable_logging,
        }


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    Aggregates all other configs. Access via get_config().
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """Dict form consumed by setup_enhanced_logging and the startup log line."""
        return {
            "host": self.server.host,
            "port": self.server.port,
            "logging": self.logging.to_legacy_dict(),
            "cors": {
                "allow_origins": self.cors.allow_origins,
                "allow_credentials": self.cors.allow_credentials,
            },
            "heartbeat": {
                "interval_ms": self.heartbeat.interval_ms,
                "timeout_ms": self.heartbeat.timeout_ms,
            },
            "relay": {
                "strict_validation": self.relay.strict_validation,
                "broadcast_presence": self.relay.broadcast_presence,
                "send_confirmation": self.relay.send_confirmation,
                "max_message_size": self.relay.max_message_size,
            },
        }
