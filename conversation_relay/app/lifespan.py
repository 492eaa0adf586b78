"""Application lifecycle management for the conversation relay.

Startup builds one RelayService and one ConnectionManager and stores them on
app.state. Shutdown drains in-flight deliveries and closes every socket.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..config import get_config
from ..realtime.connection_manager import ConnectionManager
from ..realtime.relay_service import RelayService
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger("conversation_relay.lifespan")

__all__ = ["lifespan"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Reuses a connection manager already placed on app.state (tests inject
    their own); otherwise builds one from configuration.
    """
    config = getattr(app.state, "config", None) or get_config()
    connection_manager = getattr(app.state, "connection_manager", None)
    if connection_manager is None:
        connection_manager = ConnectionManager(RelayService(), relay_config=config.relay)
        app.state.connection_manager = connection_manager

    logger.info(
        "Conversation relay started",
        strict_validation=connection_manager.config.strict_validation,
        broadcast_presence=connection_manager.config.broadcast_presence,
    )

    try:
        yield
    finally:
        logger.info("Shutting down conversation relay")
        await connection_manager.shutdown()
        logger.info("Conversation relay shutdown complete")
