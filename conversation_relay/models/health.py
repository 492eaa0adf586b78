"""
Health models for the conversation relay.

Response bodies for /health and /monitoring/stats.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    """Health status of the relay process."""

    HEALTHY = "healthy"
    SHUTTING_DOWN = "shutting_down"


class HealthResponse(BaseModel):
    """Response body of GET /health."""

    status: HealthStatus = Field(..., description="Relay health status")
    connections: int = Field(..., ge=0, description="Connections with a registered user identity")
    uptime_seconds: float = Field(..., ge=0, description="Relay uptime in seconds")
    timestamp: str = Field(..., description="Time of the check, ISO 8601 UTC")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "connections": 12,
                "uptime_seconds": 3600.5,
                "timestamp": "2026-01-01T12:00:00.000Z",
            }
        }
    )


class RelayStatsResponse(BaseModel):
    """Response body of GET /monitoring/stats."""

    connections: int
    identified_connections: int
    online_users: int
    messages_relayed: int
    open_sockets: int
    uptime_seconds: float
    shutting_down: bool
    rooms: dict
    delivery: dict[str, int]
