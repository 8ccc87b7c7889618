"""
Unit tests for CommitHandler routing.
"""

from unittest.mock import AsyncMock

import pytest

from indexer.jjalcloud_indexer.ingest import CommitHandler
from indexer.jjalcloud_indexer.stream import CommitEvent, Operation

GIF = "com.jjalcloud.feed.gif"
LIKE = "com.jjalcloud.feed.like"
BLOB = {"$type": "blob", "ref": {"$link": "bafkreiabc"}, "mimeType": "image/gif", "size": 10}


def event(collection, operation, rkey="xyz", record=None, cid=None, did="did:plc:abc"):
    return CommitEvent(
        did=did,
        time_us=1,
        collection=collection,
        rkey=rkey,
        operation=operation,
        record=record,
        cid=cid,
    )


class TestCommitHandler:
    """Tests for CommitHandler."""

    @pytest.fixture
    def writer(self):
        return AsyncMock()

    @pytest.fixture
    def handler(self, writer):
        return CommitHandler(writer)

    @pytest.mark.asyncio
    async def test_gif_create_upserts(self, handler, writer):
        """gif create becomes upsert_gif."""
        await handler(
            event(GIF, Operation.CREATE, record={"file": BLOB, "title": "cat"}, cid="bafy1")
        )

        writer.upsert_gif.assert_awaited_once()
        record = writer.upsert_gif.await_args.args[0]
        assert record.uri == "at://did:plc:abc/com.jjalcloud.feed.gif/xyz"
        assert record.cid == "bafy1"
        assert record.title == "cat"

    @pytest.mark.asyncio
    async def test_gif_update_upserts(self, handler, writer):
        """gif update is the same upsert."""
        await handler(event(GIF, Operation.UPDATE, record={"file": BLOB}, cid="bafy2"))

        writer.upsert_gif.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gif_delete(self, handler, writer):
        """gif delete removes by URI."""
        await handler(event(GIF, Operation.DELETE))

        writer.delete_gif.assert_awaited_once_with("at://did:plc:abc/com.jjalcloud.feed.gif/xyz")

    @pytest.mark.asyncio
    async def test_like_create(self, handler, writer):
        """like create inserts with the subject URI."""
        subject = "at://did:plc:other/com.jjalcloud.feed.gif/g1"
        await handler(
            event(LIKE, Operation.CREATE, rkey="lk1", record={"subject": {"uri": subject}})
        )

        like = writer.insert_like.await_args.args[0]
        assert (like.subject, like.author, like.rkey) == (subject, "did:plc:abc", "lk1")

    @pytest.mark.asyncio
    async def test_like_delete(self, handler, writer):
        """like delete removes by (author, rkey)."""
        await handler(event(LIKE, Operation.DELETE, rkey="lk1"))

        writer.delete_like.assert_awaited_once_with("did:plc:abc", "lk1")

    @pytest.mark.asyncio
    async def test_invalid_record_skipped(self, handler, writer):
        """Records missing required fields are skipped without error."""
        await handler(event(GIF, Operation.CREATE, record={"title": "no blob"}, cid="bafy1"))
        await handler(event(LIKE, Operation.CREATE, record={"subject": {}}))

        writer.upsert_gif.assert_not_awaited()
        writer.insert_like.assert_not_awaited()
        assert handler.stats["skipped_count"] == 2

    @pytest.mark.asyncio
    async def test_unknown_collection_ignored(self, handler, writer):
        """Other collections never reach the writer."""
        await handler(event("app.bsky.feed.post", Operation.CREATE, record={"text": "hi"}))

        assert writer.method_calls == []
        assert handler.stats["ignored_count"] == 1

    @pytest.mark.asyncio
    async def test_writer_error_propagates(self, handler, writer):
        """Store failures surface to the stream client's error boundary."""
        writer.delete_gif.side_effect = RuntimeError("database is locked")

        with pytest.raises(RuntimeError, match="locked"):
            await handler(event(GIF, Operation.DELETE))

    @pytest.mark.asyncio
    async def test_collection_filter(self, writer):
        """A handler limited to gifs ignores likes."""
        handler = CommitHandler(writer, collections=[GIF])

        await handler(event(LIKE, Operation.DELETE, rkey="lk1"))

        writer.delete_like.assert_not_awaited()
