"""
FastAPI application factory for the conversation relay.

Handles app creation, CORS configuration and router registration.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..api.monitoring import monitoring_router
from ..api.real_time import realtime_router
from ..config import get_config
from ..config.models import AppConfig
from ..realtime.connection_manager import ConnectionManager
from ..structured_logging.enhanced_logging_config import get_logger
from .lifespan import lifespan

logger = get_logger(__name__)


def create_app(config: AppConfig | None = None, connection_manager: ConnectionManager | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Configuration to use instead of get_config()
        connection_manager: Pre-built manager (tests); the lifespan builds one otherwise

    Returns:
        FastAPI: The configured application instance
    """
    config = config or get_config()

    app = FastAPI(
        title="Conversation Relay",
        description="Real-time relay for CRM conversation messages",
        version="0.1.0",
        lifespan=lifespan,
    )

    cors_cfg = config.cors
    logger.info(
        "CORS configuration",
        allow_origins=cors_cfg.allow_origins,
        allow_methods=cors_cfg.allow_methods,
        allow_credentials=cors_cfg.allow_credentials,
        max_age=cors_cfg.max_age,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_cfg.allow_origins,
        allow_credentials=cors_cfg.allow_credentials,
        allow_methods=cors_cfg.allow_methods,
        allow_headers=cors_cfg.allow_headers,
        max_age=cors_cfg.max_age,
    )

    app.state.config = config
    app.state.cors_config = cors_cfg
    if connection_manager is not None:
        app.state.connection_manager = connection_manager

    app.include_router(monitoring_router)
    app.include_router(realtime_router)

    return app
