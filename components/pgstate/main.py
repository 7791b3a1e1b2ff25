"""
pgstate server - Main entry point.

This module starts the state store with all components:
- PostgreSQL connection pool and state table bootstrap
- HTTP API

Usage:
    python -m components.pgstate.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The HTTP API only starts after the store is initialized
    - The connection pool is released exactly once on shutdown
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import start_http_server
from .config import ServerConfig
from .errors import InitializationError
from .state import PostgreSQLStore, PostgresDBAccess

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.VerboseJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """pgstate server orchestrator.

    Attributes:
        config: Server configuration
        store: State store component

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.store: PostgreSQLStore | None = None
        self.runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting pgstate server")
        self.config.log_config()

        try:
            self.store = PostgreSQLStore(PostgresDBAccess(self.config.postgres))
            # init blocks on the network; keep the loop free
            await asyncio.to_thread(self.store.dbaccess.init)

            self.runner = await start_http_server(self.store, self.config.http)

            self._running = True
            logger.info("pgstate server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self.runner is None and self.store is None:
            return

        logger.info("Stopping pgstate server")

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        if self.store:
            self.store.close()
            self.store = None

        self._running = False
        logger.info("pgstate server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except (InitializationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    except InitializationError:
        sys.exit(1)
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
