"""Kite entry point."""

import asyncio
import logging

from kite.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Start the router with its HTTP server."""
    from kite.app import create_app, run

    logger.info("Starting Kite on %s:%d...", settings.server_host, settings.server_port)
    app = create_app()
    try:
        asyncio.run(run(app))
    except KeyboardInterrupt:
        logger.info("Kite stopped")


if __name__ == "__main__":
    main()
