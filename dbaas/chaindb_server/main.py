"""
ChainDB Server - Main entry point.

This module starts the ChainDB server with all components:
- Database (SQLite handle, operation queue, table services)
- Change notifier and WebSocket broadcast hub
- HTTP server (REST resources plus the push channel)

Usage:
    python -m dbaas.chaindb_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The notifier is attached before the HTTP server accepts requests
    - Graceful shutdown closes subscribers, then drains the queue, then
      closes the storage handle

How to change safely:
    - Keep the shutdown order: no mutation may be accepted after the drain
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import create_http_app
from .config import ServerConfig
from .db import Database
from .notify import BroadcastHub, ChangeNotifier

logger = logging.getLogger(__name__)

DEMO_TABLE = "Person"
DEMO_COLUMNS = {"nickname": "text", "age": "number"}
DEMO_ROWS = (
    {"nickname": "Joe", "age": 42},
    {"nickname": "Jill", "age": 43},
)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def seed_demo_data(database: Database) -> None:
    """Create the demo Person table with two rows, unless it exists."""
    if DEMO_TABLE in database:
        return
    people = await database.create_table(DEMO_TABLE, DEMO_COLUMNS)
    for row in DEMO_ROWS:
        people.insert(row)
    await database.persist_all()
    logger.info("Seeded demo data", extra={"table": DEMO_TABLE, "rows": len(DEMO_ROWS)})


class Server:
    """ChainDB Server orchestrator.

    Manages the lifecycle of all server components:
    - Database
    - Change notifier and broadcast hub
    - HTTP server

    Attributes:
        config: Server configuration
        database: Open database (after start)
        hub: WebSocket broadcast hub
        notifier: Change notifier feeding the hub

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        http = self.config.http
        self.hub = BroadcastHub(
            max_pending=http.max_pending_events,
            heartbeat=http.heartbeat_seconds or None,
        )
        self.notifier = ChangeNotifier(self.hub.broadcast)

        # Components (initialized in start())
        self.database: Database | None = None
        self._runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, wait: bool = True) -> None:
        """Start the server and all components.

        Args:
            wait: Block until request_shutdown() is called
        """
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting ChainDB server")
        self.config.log_config()

        try:
            storage = self.config.storage
            if storage.database_path != ":memory:":
                Path(storage.database_path).parent.mkdir(parents=True, exist_ok=True)

            self.database = await Database.open(
                storage.database_path,
                busy_timeout_ms=storage.busy_timeout_ms,
                operation_timeout=storage.operation_timeout,
            )
            logger.info(
                "Database opened",
                extra={"path": storage.database_path, "tables": list(self.database.tables)},
            )
            self.notifier.attach(self.database)

            if storage.seed_demo_data:
                await seed_demo_data(self.database)

            app = create_http_app(self.database, self.hub, self.config.http)
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.http.host, self.config.http.port)
            await site.start()
            logger.info(
                f"HTTP server started on {self.config.http.host}:{self.config.http.port}"
            )

            self._running = True
            logger.info("ChainDB server started successfully")

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

        if wait:
            # Wait for shutdown signal
            await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping ChainDB server")

        await self.hub.close()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.database and self.database.is_open:
            self.notifier.detach(self.database)
            await self.database.close()

        self._running = False
        logger.info("ChainDB server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
