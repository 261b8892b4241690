"""
Configuration management for ChainDB Server.

All configuration is done via environment variables. This module provides
typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and the dataclass defaults in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Interface to bind the HTTP server to
        port: TCP port of the HTTP server
        ws_path: Path of the WebSocket push channel
        max_pending_events: Per-subscriber outbox size before events are dropped
        heartbeat_seconds: WebSocket ping interval (0 disables)
    """

    host: str = "0.0.0.0"
    port: int = 18080
    ws_path: str = "/ws"
    max_pending_events: int = 1000
    heartbeat_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "18080")),
            ws_path=os.getenv("WS_PATH", "/ws"),
            max_pending_events=int(os.getenv("WS_MAX_PENDING_EVENTS", "1000")),
            heartbeat_seconds=float(os.getenv("WS_HEARTBEAT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        database_path: SQLite database file (":memory:" for a transient one)
        busy_timeout_ms: SQLite busy timeout in milliseconds
        operation_timeout_seconds: Per-operation timeout on the queue (0 disables)
        seed_demo_data: Create and fill the demo Person table if missing
    """

    database_path: str = "chaindb.sqlite3"
    busy_timeout_ms: int = 5000
    operation_timeout_seconds: float = 0.0
    seed_demo_data: bool = False

    @property
    def operation_timeout(self) -> float | None:
        return self.operation_timeout_seconds or None

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", "chaindb.sqlite3"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            operation_timeout_seconds=float(os.getenv("OPERATION_TIMEOUT_SECONDS", "0")),
            seed_demo_data=os.getenv("SEED_DEMO_DATA", "false").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Root log level
        log_format: "json" or "text"
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Complete server configuration.

    Example:
        >>> config = ServerConfig.from_env()
        >>> config.validate()
        >>> config.log_config()
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If a variable cannot be parsed or the result is invalid
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 <= self.http.port <= 65535:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")
        if not self.http.ws_path.startswith("/"):
            raise ValueError(f"WS_PATH must start with '/': {self.http.ws_path}")
        if self.http.max_pending_events < 1:
            raise ValueError("WS_MAX_PENDING_EVENTS must be at least 1")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must not be negative")
        if self.storage.operation_timeout_seconds < 0:
            raise ValueError("OPERATION_TIMEOUT_SECONDS must not be negative")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.storage.database_path != ":memory:":
            directory = os.path.dirname(os.path.abspath(self.storage.database_path))
            if not os.path.isdir(directory):
                logger.warning(
                    f"Database directory does not exist: {directory}. "
                    "It will be created on startup."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_host": self.http.host,
                "http_port": self.http.port,
                "ws_path": self.http.ws_path,
                "database_path": self.storage.database_path,
                "operation_timeout": self.storage.operation_timeout,
                "seed_demo_data": self.storage.seed_demo_data,
                "log_level": self.observability.log_level,
            },
        )
