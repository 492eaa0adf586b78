"""
Monitoring endpoints for the conversation relay.

/health is the liveness probe; /monitoring/stats gives a fuller picture of
registry, rooms and delivery counters.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from ..models.health import HealthResponse, HealthStatus, RelayStatsResponse
from ..realtime.connection_manager import ConnectionManager
from ..realtime.envelope import utc_now_z

monitoring_router = APIRouter(tags=["monitoring"])


def _resolve_connection_manager_from_request(request: Request) -> ConnectionManager:
    manager = getattr(request.app.state, "connection_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Service temporarily unavailable")
    return manager


@monitoring_router.get("/health", response_model=HealthResponse)
async def get_health(request: Request) -> HealthResponse:
    """Report relay status, identified connection count and uptime."""
    manager = _resolve_connection_manager_from_request(request)
    status = HealthStatus.SHUTTING_DOWN if manager.shutting_down else HealthStatus.HEALTHY
    return HealthResponse(
        status=status,
        connections=manager.connection_count,
        uptime_seconds=round(manager.uptime_seconds, 3),
        timestamp=utc_now_z(),
    )


@monitoring_router.get("/monitoring/stats", response_model=RelayStatsResponse)
async def get_relay_stats(request: Request) -> RelayStatsResponse:
    manager = _resolve_connection_manager_from_request(request)
    return RelayStatsResponse(**manager.get_stats())


@monitoring_router.get("/")
async def root() -> dict[str, str]:
    return {"service": "conversation-relay", "status": "running"}
