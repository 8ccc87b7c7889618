"""
Unit tests for the local SQLite store.

Tests cover:
- Idempotent gif upserts and deletes
- Like replace-by-(author, rkey)
- Known identity union
- Batches are applied atomically
"""

import tempfile
from datetime import datetime, timezone

import pytest

from indexer.jjalcloud_indexer.store import (
    DurableStore,
    GifRecord,
    LikeRecord,
    LocalStore,
    Statement,
    StoreQueryError,
)
from indexer.jjalcloud_indexer.store import statements as sql

CREATED = datetime(2024, 9, 9, 19, 46, 2, tzinfo=timezone.utc)
URI = "at://did:plc:abc/com.jjalcloud.feed.gif/xyz"


def gif(**overrides):
    fields = dict(
        uri=URI,
        cid="bafy1",
        author="did:plc:abc",
        file={"ref": {"$link": "bafkrei"}, "mimeType": "image/gif"},
        created_at=CREATED,
        title="cat",
        tags=["cat"],
    )
    fields.update(overrides)
    return GifRecord(**fields)


def like(rkey="lk1", subject=URI, author="did:plc:bob"):
    return LikeRecord(subject=subject, author=author, rkey=rkey, created_at=CREATED)


class TestLocalStore:
    """Tests for LocalStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        return LocalStore(f"{data_dir}/nested/index.sqlite", wal_mode=False)

    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, store):
        assert isinstance(store, DurableStore)

    @pytest.mark.asyncio
    async def test_upsert_gif_round_trip(self, store):
        """Stored gifs read back with JSON fields and Unix-second timestamps."""
        await store.initialize()
        await store.upsert_gif(gif())

        fetched = await store.get_gif(URI)

        assert fetched is not None
        assert fetched.title == "cat"
        assert fetched.tags == ["cat"]
        assert fetched.file["mimeType"] == "image/gif"
        assert fetched.created_at == CREATED

    @pytest.mark.asyncio
    async def test_upsert_gif_is_idempotent(self, store):
        """Replaying an upsert leaves one row with the latest fields."""
        await store.initialize()
        await store.upsert_gif(gif())
        await store.upsert_gif(gif(cid="bafy2", title="dog"))
        await store.upsert_gif(gif(cid="bafy2", title="dog"))

        assert await store.count_rows("gifs") == 1
        fetched = await store.get_gif(URI)
        assert (fetched.cid, fetched.title) == ("bafy2", "dog")

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store):
        """Deleting rows that do not exist is not an error."""
        await store.initialize()

        await store.delete_gif(URI)
        await store.delete_like("did:plc:bob", "nope")

        assert await store.count_rows("gifs") == 0

    @pytest.mark.asyncio
    async def test_insert_like_replaces(self, store):
        """A second insert for the same (author, rkey) replaces the first."""
        await store.initialize()
        await store.insert_like(like())
        await store.insert_like(like(subject="at://did:plc:abc/com.jjalcloud.feed.gif/other"))

        assert await store.count_rows("likes") == 1
        fetched = await store.get_like("did:plc:bob", "lk1")
        assert fetched.subject.endswith("/other")

    @pytest.mark.asyncio
    async def test_delete_like(self, store):
        await store.initialize()
        await store.insert_like(like("lk1"))
        await store.insert_like(like("lk2"))

        await store.delete_like("did:plc:bob", "lk1")

        assert await store.list_like_rkeys("did:plc:bob") == ["lk2"]

    @pytest.mark.asyncio
    async def test_known_identities_union(self, store):
        """Identities come from users, gif authors and like authors."""
        await store.initialize()
        await store.execute_batch(
            [
                Statement(
                    "INSERT INTO users (did, handle, created_at, last_login_at) VALUES (?, ?, ?, ?)",
                    ("did:plc:user", "user.test", 0, 0),
                )
            ]
        )
        await store.upsert_gif(gif())
        await store.insert_like(like(author="did:plc:bob"))
        await store.insert_like(like(rkey="lk9", author="did:plc:abc"))

        identities = await store.list_known_identities()

        assert sorted(identities) == ["did:plc:abc", "did:plc:bob", "did:plc:user"]

    @pytest.mark.asyncio
    async def test_batch_rolls_back_on_error(self, store):
        """A failing statement aborts the whole batch."""
        await store.initialize()

        with pytest.raises(StoreQueryError):
            await store.execute_batch(
                [sql.upsert_gif(gif()), Statement("INSERT INTO missing_table VALUES (1)")]
            )

        assert await store.count_rows("gifs") == 0

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        await store.initialize()
        await store.upsert_gif(gif())
        await store.initialize()

        assert await store.list_gif_uris("did:plc:abc") == [URI]
