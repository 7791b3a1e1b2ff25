"""
Configuration management for pgstate.

Server configuration is done via environment variables; the store component
can also be configured from the metadata properties handed over by a host
runtime (``connectionString``, ``tableName``, ...).

Invariants:
    - The connection string is required and never logged
    - The table name is a plain SQL identifier
    - Pool bounds are positive and ordered

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Keep environment variable and metadata names in sync
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import InitializationError

logger = logging.getLogger(__name__)

_TABLE_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]{0,62}")

# Metadata property names understood by PostgresConfig.from_metadata
CONNECTION_STRING_KEY = "connectionString"
TABLE_NAME_KEY = "tableName"
POOL_MIN_SIZE_KEY = "poolMinSize"
POOL_MAX_SIZE_KEY = "poolMaxSize"
POOL_TIMEOUT_KEY = "poolTimeoutSeconds"


@dataclass(frozen=True)
class PostgresConfig:
    """PostgreSQL backend configuration.

    Attributes:
        connection_string: libpq connection string or URI
        table_name: Name of the state table
        pool_min_size: Connections kept open by the pool
        pool_max_size: Upper bound on pooled connections
        pool_timeout_s: Seconds to wait for a connection (and for the pool to open)
    """

    connection_string: str = ""
    table_name: str = "state"
    pool_min_size: int = 1
    pool_max_size: int = 10
    pool_timeout_s: float = 30.0

    @classmethod
    def from_env(cls) -> PostgresConfig:
        """Load configuration from environment variables."""
        return cls(
            connection_string=os.getenv("PGSTATE_CONNECTION_STRING", ""),
            table_name=os.getenv("PGSTATE_TABLE_NAME", "state"),
            pool_min_size=int(os.getenv("PGSTATE_POOL_MIN_SIZE", "1")),
            pool_max_size=int(os.getenv("PGSTATE_POOL_MAX_SIZE", "10")),
            pool_timeout_s=float(os.getenv("PGSTATE_POOL_TIMEOUT_SECONDS", "30")),
        )

    @classmethod
    def from_metadata(cls, properties: Mapping[str, str]) -> PostgresConfig:
        """Load configuration from component metadata properties.

        Args:
            properties: Metadata properties supplied by the host runtime

        Raises:
            InitializationError: If a numeric property cannot be parsed
        """
        try:
            return cls(
                connection_string=properties.get(CONNECTION_STRING_KEY, ""),
                table_name=properties.get(TABLE_NAME_KEY) or "state",
                pool_min_size=int(properties.get(POOL_MIN_SIZE_KEY) or 1),
                pool_max_size=int(properties.get(POOL_MAX_SIZE_KEY) or 10),
                pool_timeout_s=float(properties.get(POOL_TIMEOUT_KEY) or 30),
            )
        except ValueError as e:
            raise InitializationError(f"invalid pool metadata: {e}") from e

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            InitializationError: If configuration is invalid.
        """
        if not self.connection_string:
            raise InitializationError("missing connection string")
        if not _TABLE_NAME_RE.fullmatch(self.table_name):
            raise InitializationError(f"invalid table name: {self.table_name!r}")
        if self.pool_min_size < 0 or self.pool_max_size < 1:
            raise InitializationError("pool sizes must be positive")
        if self.pool_min_size > self.pool_max_size:
            raise InitializationError(
                f"pool_min_size ({self.pool_min_size}) exceeds pool_max_size ({self.pool_max_size})"
            )
        if self.pool_timeout_s <= 0:
            raise InitializationError("pool timeout must be positive")


@dataclass(frozen=True)
class HttpConfig:
    """HTTP API configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
    """

    host: str = "0.0.0.0"
    port: int = 3500

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "3500")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
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


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        postgres: Backend configuration
        http: HTTP API configuration
        observability: Logging configuration
    """

    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            InitializationError: If required configuration is missing or invalid.
            ValueError: If a numeric variable cannot be parsed.
        """
        config = cls(
            postgres=PostgresConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency."""
        self.postgres.validate()
        if not 0 < self.http.port < 65536:
            raise InitializationError(f"invalid HTTP_PORT: {self.http.port}")
        if self.observability.log_format not in ("json", "text"):
            raise InitializationError(
                f"invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log configuration (connection string redacted)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "table_name": self.postgres.table_name,
                "pool_min_size": self.postgres.pool_min_size,
                "pool_max_size": self.postgres.pool_max_size,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
