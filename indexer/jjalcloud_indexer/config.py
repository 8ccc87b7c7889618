"""
Configuration management for the jjalcloud indexer.

All configuration is done via environment variables. This module provides
typed, frozen configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The D1 API token is never logged or exposed in error messages
    - Compression requires a readable zstd dictionary

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep variable names stable; deployments set them outside the repo
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

GIF_COLLECTION = "com.jjalcloud.feed.gif"
LIKE_COLLECTION = "com.jjalcloud.feed.like"

DEFAULT_JETSTREAM_URL = "wss://jetstream2.us-east.bsky.network/subscribe"
DEFAULT_PDS_URL = "https://bsky.social"
DEFAULT_D1_API_BASE_URL = "https://api.cloudflare.com/client/v4"

# Jetstream rejects subscriptions with more DIDs than this
MAX_WANTED_DIDS = 10_000


class StoreBackend(Enum):
    """Supported durable store backends."""

    LOCAL = "local"
    D1 = "d1"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'")


def _env_list(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class JetstreamConfig:
    """Jetstream subscription configuration.

    Attributes:
        url: WebSocket endpoint without query parameters
        wanted_collections: Server-side collection filter
        wanted_dids: Server-side DID filter (empty = all repositories)
        compress: Request zstd-compressed frames
        zstd_dictionary_path: Shared dictionary used to decompress frames
        reconnect_delay_ms: Initial (floor) reconnect delay
        max_reconnect_delay_ms: Reconnect delay ceiling
        cursor_safety_margin_us: How far to rewind the cursor on reconnect
    """

    url: str = DEFAULT_JETSTREAM_URL
    wanted_collections: tuple[str, ...] = (GIF_COLLECTION, LIKE_COLLECTION)
    wanted_dids: tuple[str, ...] = ()
    compress: bool = False
    zstd_dictionary_path: str | None = None
    reconnect_delay_ms: int = 3_000
    max_reconnect_delay_ms: int = 60_000
    cursor_safety_margin_us: int = 5_000_000

    @classmethod
    def from_env(cls) -> JetstreamConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("JETSTREAM_URL", DEFAULT_JETSTREAM_URL),
            wanted_collections=_env_list(
                "JETSTREAM_WANTED_COLLECTIONS", (GIF_COLLECTION, LIKE_COLLECTION)
            ),
            wanted_dids=_env_list("JETSTREAM_WANTED_DIDS"),
            compress=_env_bool("JETSTREAM_COMPRESS", "false"),
            zstd_dictionary_path=os.getenv("JETSTREAM_ZSTD_DICTIONARY"),
            reconnect_delay_ms=_env_int("JETSTREAM_RECONNECT_DELAY_MS", 3_000),
            max_reconnect_delay_ms=_env_int("JETSTREAM_MAX_RECONNECT_DELAY_MS", 60_000),
            cursor_safety_margin_us=_env_int("JETSTREAM_CURSOR_SAFETY_MARGIN_US", 5_000_000),
        )


@dataclass(frozen=True)
class LocalStoreConfig:
    """Embedded SQLite store configuration.

    Attributes:
        db_path: Path to the SQLite database file
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    db_path: str = "./data/jjalcloud.sqlite"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> LocalStoreConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("LOCAL_DB_PATH", "./data/jjalcloud.sqlite"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=_env_int("SQLITE_BUSY_TIMEOUT_MS", 5000),
        )


@dataclass(frozen=True)
class D1Config:
    """Cloudflare D1 HTTP API configuration.

    Attributes:
        account_id: Cloudflare account ID
        database_id: D1 database ID
        api_token: API token with D1 edit permission (secret)
        base_url: API base URL (overridable for testing)
        timeout_seconds: Per-request timeout
    """

    account_id: str | None = None
    database_id: str | None = None
    api_token: str | None = field(default=None, repr=False)
    base_url: str = DEFAULT_D1_API_BASE_URL
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> D1Config:
        """Load configuration from environment variables."""
        return cls(
            account_id=os.getenv("D1_ACCOUNT_ID"),
            database_id=os.getenv("D1_DATABASE_ID"),
            api_token=os.getenv("D1_API_TOKEN"),
            base_url=os.getenv("D1_API_BASE_URL", DEFAULT_D1_API_BASE_URL),
            timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
        )


@dataclass(frozen=True)
class BatchConfig:
    """Write batching configuration.

    Attributes:
        enabled: Route live writes through the EventBatcher
        max_batch_size: Pending operation count that triggers a flush
        flush_interval_ms: Interval between periodic flushes
    """

    enabled: bool = False
    max_batch_size: int = 50
    flush_interval_ms: int = 500

    @classmethod
    def from_env(cls) -> BatchConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("BATCH_ENABLED", "false"),
            max_batch_size=_env_int("BATCH_MAX_SIZE", 50),
            flush_interval_ms=_env_int("BATCH_FLUSH_INTERVAL_MS", 500),
        )


@dataclass(frozen=True)
class BackfillConfig:
    """Backfill / reconciliation configuration.

    Attributes:
        pds_url: Base URL of the PDS serving com.atproto.repo.listRecords
        page_limit: Records requested per listRecords page
        run_on_start: Run a full backfill in the background at startup
        timeout_seconds: HTTP timeout for repository requests
    """

    pds_url: str = DEFAULT_PDS_URL
    page_limit: int = 100
    run_on_start: bool = False
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> BackfillConfig:
        """Load configuration from environment variables."""
        return cls(
            pds_url=os.getenv("PDS_URL", DEFAULT_PDS_URL),
            page_limit=_env_int("BACKFILL_PAGE_LIMIT", 100),
            run_on_start=_env_bool("BACKFILL_ON_START", "false"),
            timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
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
class IndexerConfig:
    """Complete indexer configuration.

    Attributes:
        store_backend: Which durable store to use
        jetstream: Jetstream subscription configuration
        local: Local SQLite configuration (if store_backend is LOCAL)
        d1: D1 configuration (if store_backend is D1)
        batch: Write batching configuration
        backfill: Backfill configuration
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.LOCAL
    jetstream: JetstreamConfig = field(default_factory=JetstreamConfig)
    local: LocalStoreConfig = field(default_factory=LocalStoreConfig)
    d1: D1Config = field(default_factory=D1Config)
    batch: BatchConfig = field(default_factory=BatchConfig)
    backfill: BackfillConfig = field(default_factory=BackfillConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> IndexerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "local").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: local, d1")

        config = cls(
            store_backend=store_backend,
            jetstream=JetstreamConfig.from_env(),
            local=LocalStoreConfig.from_env(),
            d1=D1Config.from_env(),
            batch=BatchConfig.from_env(),
            backfill=BackfillConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.D1:
            missing = [
                name
                for name, value in (
                    ("D1_ACCOUNT_ID", self.d1.account_id),
                    ("D1_DATABASE_ID", self.d1.database_id),
                    ("D1_API_TOKEN", self.d1.api_token),
                )
                if not value
            ]
            if missing:
                raise ValueError(f"{', '.join(missing)} required when STORE_BACKEND=d1")

        if self.jetstream.compress:
            path = self.jetstream.zstd_dictionary_path
            if not path:
                raise ValueError("JETSTREAM_ZSTD_DICTIONARY is required when JETSTREAM_COMPRESS=true")
            if not Path(path).is_file():
                raise ValueError(f"zstd dictionary not found: {path}")

        if not self.jetstream.wanted_collections:
            raise ValueError("JETSTREAM_WANTED_COLLECTIONS must name at least one collection")

        if len(self.jetstream.wanted_dids) > MAX_WANTED_DIDS:
            logger.warning(
                f"JETSTREAM_WANTED_DIDS has {len(self.jetstream.wanted_dids)} entries; "
                f"only the first {MAX_WANTED_DIDS} will be sent"
            )

        if self.jetstream.reconnect_delay_ms <= 0:
            raise ValueError("JETSTREAM_RECONNECT_DELAY_MS must be positive")
        if self.jetstream.max_reconnect_delay_ms < self.jetstream.reconnect_delay_ms:
            raise ValueError(
                "JETSTREAM_MAX_RECONNECT_DELAY_MS must be >= JETSTREAM_RECONNECT_DELAY_MS"
            )
        if self.jetstream.cursor_safety_margin_us < 0:
            raise ValueError("JETSTREAM_CURSOR_SAFETY_MARGIN_US must not be negative")

        if self.batch.max_batch_size <= 0:
            raise ValueError("BATCH_MAX_SIZE must be positive")
        if self.batch.flush_interval_ms <= 0:
            raise ValueError("BATCH_FLUSH_INTERVAL_MS must be positive")

        if not 1 <= self.backfill.page_limit <= 100:
            raise ValueError("BACKFILL_PAGE_LIMIT must be between 1 and 100")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Indexer configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "local_db_path": self.local.db_path
                if self.store_backend == StoreBackend.LOCAL
                else None,
                "d1_database_id": self.d1.database_id
                if self.store_backend == StoreBackend.D1
                else None,
                "jetstream_url": self.jetstream.url,
                "wanted_collections": list(self.jetstream.wanted_collections),
                "wanted_dids": len(self.jetstream.wanted_dids),
                "compress": self.jetstream.compress,
                "batch_enabled": self.batch.enabled,
                "pds_url": self.backfill.pds_url,
                "log_level": self.observability.log_level,
            },
        )
