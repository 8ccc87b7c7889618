"""
Unit tests for environment-driven configuration.

Tests cover:
- Defaults
- List and boolean parsing
- Backend selection and D1 credential validation
- Range checks
"""

import pytest

from indexer.jjalcloud_indexer.config import (
    DEFAULT_JETSTREAM_URL,
    GIF_COLLECTION,
    LIKE_COLLECTION,
    BackfillConfig,
    BatchConfig,
    IndexerConfig,
    JetstreamConfig,
    StoreBackend,
)

ENV_VARS = [
    "JETSTREAM_URL",
    "JETSTREAM_COMPRESS",
    "JETSTREAM_ZSTD_DICTIONARY",
    "JETSTREAM_WANTED_COLLECTIONS",
    "JETSTREAM_WANTED_DIDS",
    "JETSTREAM_RECONNECT_DELAY_MS",
    "JETSTREAM_MAX_RECONNECT_DELAY_MS",
    "JETSTREAM_CURSOR_SAFETY_MARGIN_US",
    "STORE_BACKEND",
    "LOCAL_DB_PATH",
    "SQLITE_WAL_MODE",
    "SQLITE_BUSY_TIMEOUT_MS",
    "D1_ACCOUNT_ID",
    "D1_DATABASE_ID",
    "D1_API_TOKEN",
    "D1_API_BASE_URL",
    "BATCH_ENABLED",
    "BATCH_MAX_SIZE",
    "BATCH_FLUSH_INTERVAL_MS",
    "PDS_URL",
    "BACKFILL_PAGE_LIMIT",
    "BACKFILL_ON_START",
    "HTTP_TIMEOUT_SECONDS",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every indexer variable from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestJetstreamConfig:
    """Tests for JetstreamConfig.from_env."""

    def test_defaults(self, clean_env):
        """Defaults subscribe to both collections without compression."""
        config = JetstreamConfig.from_env()

        assert config.url == DEFAULT_JETSTREAM_URL
        assert config.wanted_collections == (GIF_COLLECTION, LIKE_COLLECTION)
        assert config.wanted_dids == ()
        assert config.compress is False
        assert config.reconnect_delay_ms == 3000
        assert config.max_reconnect_delay_ms == 60000
        assert config.cursor_safety_margin_us == 5_000_000

    def test_comma_lists_are_trimmed(self, clean_env):
        """Lists split on commas and drop blanks."""
        clean_env.setenv("JETSTREAM_WANTED_DIDS", " did:plc:a , did:plc:b,, ")

        config = JetstreamConfig.from_env()

        assert config.wanted_dids == ("did:plc:a", "did:plc:b")

    def test_invalid_integer_names_variable(self, clean_env):
        """Non-integer values raise with the variable name."""
        clean_env.setenv("JETSTREAM_RECONNECT_DELAY_MS", "soon")

        with pytest.raises(ValueError, match="JETSTREAM_RECONNECT_DELAY_MS"):
            JetstreamConfig.from_env()

    def test_invalid_timeout_names_variable(self, clean_env):
        """A non-numeric HTTP timeout raises with the variable name."""
        clean_env.setenv("HTTP_TIMEOUT_SECONDS", "slow")

        with pytest.raises(ValueError, match="HTTP_TIMEOUT_SECONDS"):
            BackfillConfig.from_env()
        with pytest.raises(ValueError, match="HTTP_TIMEOUT_SECONDS"):
            IndexerConfig.from_env()

    def test_fractional_timeout(self, clean_env):
        clean_env.setenv("HTTP_TIMEOUT_SECONDS", "2.5")

        assert BackfillConfig.from_env().timeout_seconds == 2.5


class TestIndexerConfig:
    """Tests for IndexerConfig aggregation and validation."""

    def test_defaults_use_local_store(self, clean_env):
        """Default backend is local SQLite with batching off."""
        config = IndexerConfig.from_env()

        assert config.store_backend == StoreBackend.LOCAL
        assert config.local.db_path == "./data/jjalcloud.sqlite"
        assert config.batch.enabled is False
        assert config.batch.max_batch_size == 50
        assert config.batch.flush_interval_ms == 500
        assert config.backfill.pds_url == "https://bsky.social"
        assert config.backfill.page_limit == 100

    def test_invalid_backend(self, clean_env):
        """Unknown STORE_BACKEND is rejected."""
        clean_env.setenv("STORE_BACKEND", "postgres")

        with pytest.raises(ValueError, match="STORE_BACKEND"):
            IndexerConfig.from_env()

    def test_d1_requires_credentials(self, clean_env):
        """D1 backend without credentials fails validation."""
        clean_env.setenv("STORE_BACKEND", "d1")
        clean_env.setenv("D1_ACCOUNT_ID", "acct")

        with pytest.raises(ValueError, match="D1_DATABASE_ID, D1_API_TOKEN"):
            IndexerConfig.from_env()

    def test_d1_with_credentials(self, clean_env):
        """D1 backend loads when all credentials are present."""
        clean_env.setenv("STORE_BACKEND", "D1")
        clean_env.setenv("D1_ACCOUNT_ID", "acct")
        clean_env.setenv("D1_DATABASE_ID", "db")
        clean_env.setenv("D1_API_TOKEN", "secret-token")

        config = IndexerConfig.from_env()

        assert config.store_backend == StoreBackend.D1
        assert "secret-token" not in repr(config.d1)

    def test_compress_requires_dictionary(self, clean_env):
        """Compression without a dictionary file fails validation."""
        clean_env.setenv("JETSTREAM_COMPRESS", "true")

        with pytest.raises(ValueError, match="JETSTREAM_ZSTD_DICTIONARY"):
            IndexerConfig.from_env()

    def test_compress_dictionary_must_exist(self, clean_env, tmp_path):
        """A dictionary path that does not exist is rejected."""
        clean_env.setenv("JETSTREAM_COMPRESS", "true")
        clean_env.setenv("JETSTREAM_ZSTD_DICTIONARY", str(tmp_path / "missing"))

        with pytest.raises(ValueError, match="not found"):
            IndexerConfig.from_env()

    def test_max_delay_below_floor(self):
        """Backoff ceiling must not be below the floor."""
        config = IndexerConfig(
            jetstream=JetstreamConfig(reconnect_delay_ms=5000, max_reconnect_delay_ms=1000)
        )

        with pytest.raises(ValueError, match="MAX_RECONNECT"):
            config.validate()

    def test_batch_size_must_be_positive(self):
        """Zero batch size is rejected."""
        config = IndexerConfig(batch=BatchConfig(enabled=True, max_batch_size=0))

        with pytest.raises(ValueError, match="BATCH_MAX_SIZE"):
            config.validate()

    def test_page_limit_range(self):
        """listRecords page limit is capped at 100."""
        config = IndexerConfig(backfill=BackfillConfig(page_limit=500))

        with pytest.raises(ValueError, match="BACKFILL_PAGE_LIMIT"):
            config.validate()
