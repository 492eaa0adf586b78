"""
Conversation relay - main application entry point.

Sets up logging before any other logger is created, builds the FastAPI app
and, when run as a module, serves it with uvicorn using the configured host,
port and WebSocket heartbeat.
"""

import uvicorn

from .app.factory import create_app
from .config import load_config
from .structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging

# Early logging setup - must happen before any logger creation.
# Invalid settings surface here as ConfigurationError, at import time.
config = load_config()
setup_enhanced_logging(config.to_legacy_dict())

logger = get_logger(__name__)
logger.info("Logging setup completed", environment=config.logging.environment)

app = create_app(config)


def run() -> None:
    """Serve the relay with uvicorn."""
    logger.info(
        "Starting conversation relay",
        host=config.server.host,
        port=config.server.port,
        ws_ping_interval=config.heartbeat.interval_seconds,
        ws_ping_timeout=config.heartbeat.timeout_seconds,
    )
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        ws_ping_interval=config.heartbeat.interval_seconds,
        ws_ping_timeout=config.heartbeat.timeout_seconds,
        log_config=None,
    )


if __name__ == "__main__":
    run()
