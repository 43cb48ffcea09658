# src/notice_relay/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then serves the FastAPI app with uvicorn
(WebSocket clients on "/", remote webhooks on the configured path).
"""

from __future__ import annotations

import logging
import sys

import uvicorn

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.ws_server import create_app
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _ssl_kwargs(settings) -> dict[str, str]:
    """TLS material is optional; if configured it must exist (fatal otherwise)."""
    certfile = getattr(settings, "ssl_certfile", None)
    keyfile = getattr(settings, "ssl_keyfile", None)
    if not certfile and not keyfile:
        return {}
    if not certfile or not keyfile:
        raise RuntimeError("Both NOTICE_SSL_CERTFILE and NOTICE_SSL_KEYFILE must be set for TLS.")
    for path in (certfile, keyfile):
        if not path.exists():
            raise RuntimeError(f"TLS file not found: {path}")
    return {"ssl_certfile": str(certfile), "ssl_keyfile": str(keyfile)}


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/notice_relay")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger.info("Starting %s...", getattr(settings, "app_name", "notice-relay"))

    try:
        ssl_kwargs = _ssl_kwargs(settings)
    except RuntimeError as e:
        logger.error("%s", e)
        sys.exit(1)

    state = create_initial_state(settings=settings)
    app = create_app(state)

    scheme = "wss" if ssl_kwargs else "ws"
    logger.info("WebSocket server listening on %s://%s:%d", scheme, settings.host, settings.port)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        **ssl_kwargs,
    )
    logger.info("Bye.")


if __name__ == "__main__":
    main()
