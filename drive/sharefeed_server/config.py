"""
Configuration management for the ShareFeed server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit CURSOR_SECRET
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Changing CURSOR_SECRET invalidates every cursor held by sync clients
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEV_CURSOR_SECRET = "sharefeed-dev-secret"


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_filename: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/sharefeed"
    db_filename: str = "sharefeed.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/sharefeed"),
            db_filename=os.getenv("DB_FILENAME", "sharefeed.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class TransactionConfig:
    """Retry policy for store transactions.

    Attributes:
        max_retries: Retries after lock contention before giving up
        retry_delay_ms: Base delay between retries (multiplied by attempt)
    """

    max_retries: int = 3
    retry_delay_ms: int = 50

    @classmethod
    def from_env(cls) -> TransactionConfig:
        """Load configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("TXN_MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("TXN_RETRY_DELAY_MS", "50")),
        )


@dataclass(frozen=True)
class FeedConfig:
    """Delta feed configuration.

    Attributes:
        default_page_size: Changes returned per page when the caller sets no limit
        max_page_size: Upper bound for a caller-provided limit
        cursor_secret: Key used to sign cursors
    """

    default_page_size: int = 100
    max_page_size: int = 1000
    cursor_secret: str = DEV_CURSOR_SECRET

    @classmethod
    def from_env(cls) -> FeedConfig:
        """Load configuration from environment variables."""
        return cls(
            default_page_size=int(os.getenv("DELTA_PAGE_SIZE", "100")),
            max_page_size=int(os.getenv("DELTA_MAX_PAGE_SIZE", "1000")),
            cursor_secret=os.getenv("CURSOR_SECRET", DEV_CURSOR_SECRET),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
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
        storage: Local storage configuration
        transactions: Transaction retry policy
        feed: Delta feed configuration
        http: HTTP server configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    transactions: TransactionConfig = field(default_factory=TransactionConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            transactions=TransactionConfig.from_env(),
            feed=FeedConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_filename:
            raise ValueError("DB_FILENAME must not be empty")
        if self.transactions.max_retries < 0:
            raise ValueError("TXN_MAX_RETRIES must be >= 0")
        if self.feed.default_page_size < 1:
            raise ValueError("DELTA_PAGE_SIZE must be >= 1")
        if self.feed.max_page_size < self.feed.default_page_size:
            raise ValueError("DELTA_MAX_PAGE_SIZE must be >= DELTA_PAGE_SIZE")
        if not self.feed.cursor_secret:
            raise ValueError("CURSOR_SECRET must not be empty")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.feed.cursor_secret == DEV_CURSOR_SECRET:
            logger.warning("CURSOR_SECRET is not set; using the development default")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "db_filename": self.storage.db_filename,
                "wal_mode": self.storage.wal_mode,
                "txn_max_retries": self.transactions.max_retries,
                "delta_page_size": self.feed.default_page_size,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
