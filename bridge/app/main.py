"""FastAPI entry-point for the session bridge."""
from __future__ import annotations

import logging

import uvicorn

from .api import create_app
from .backend.http_client import GatewayHttpClient
from .backend.ws_client import GatewayEventStream
from .config import Settings, get_settings
from .logging_config import configure_logging
from .session_manager import SessionBridge

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(settings)

bridge = SessionBridge(
    GatewayHttpClient(settings),
    settings=settings,
    event_stream=GatewayEventStream(settings),
)
app = create_app(bridge, settings)


def run() -> None:
    """Serve the bridge with uvicorn on the configured host and port."""
    logger.info("Server running on http://%s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
