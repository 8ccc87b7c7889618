"""
Unit tests for the D1 HTTP store, using httpx.MockTransport.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from indexer.jjalcloud_indexer.store import (
    D1HttpStore,
    GifRecord,
    LikeRecord,
    StoreError,
    StoreQueryError,
)
from indexer.jjalcloud_indexer.store import statements as sql

CREATED = datetime(2024, 9, 9, tzinfo=timezone.utc)
QUERY_URL = "https://api.example.test/client/v4/accounts/acct/d1/database/db/query"


def ok(results=None, count=1):
    return httpx.Response(
        200,
        json={
            "result": [
                {"results": results or [], "success": True, "meta": {}} for _ in range(count)
            ],
            "success": True,
            "errors": [],
            "messages": [],
        },
    )


class Recorder:
    """MockTransport handler that records request bodies."""

    def __init__(self, responder=None):
        self.requests = []
        self.responder = responder or (lambda body: ok())

    def __call__(self, request):
        body = json.loads(request.content)
        self.requests.append((request, body))
        return self.responder(body)


def make_store(recorder):
    return D1HttpStore(
        account_id="acct",
        database_id="db",
        api_token="secret-token",
        base_url="https://api.example.test/client/v4/",
        transport=httpx.MockTransport(recorder),
    )


class TestD1HttpStore:
    """Tests for D1HttpStore."""

    @pytest.mark.asyncio
    async def test_query_url_and_auth(self):
        """Requests go to the account/database query endpoint with a bearer token."""
        recorder = Recorder()
        store = make_store(recorder)
        await store.initialize()

        await store.delete_gif("at://did:plc:abc/com.jjalcloud.feed.gif/xyz")
        await store.close()

        request, body = recorder.requests[0]
        assert str(request.url) == QUERY_URL
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert body == {
            "sql": sql.DELETE_GIF_SQL,
            "params": ["at://did:plc:abc/com.jjalcloud.feed.gif/xyz"],
        }

    @pytest.mark.asyncio
    async def test_batch_posts_array(self):
        """execute_batch sends one array of statements in order."""
        recorder = Recorder(lambda body: ok(count=len(body)))
        store = make_store(recorder)
        await store.initialize()

        await store.execute_batch([sql.delete_gif("a"), sql.delete_like("did:plc:bob", "lk1")])

        assert len(recorder.requests) == 1
        body = recorder.requests[0][1]
        assert [item["sql"] for item in body] == [sql.DELETE_GIF_SQL, sql.DELETE_LIKE_SQL]

    @pytest.mark.asyncio
    async def test_insert_like_is_replace_batch(self):
        """Like inserts are a delete then insert in one request."""
        recorder = Recorder(lambda body: ok(count=len(body)))
        store = make_store(recorder)
        await store.initialize()

        await store.insert_like(
            LikeRecord(subject="at://s", author="did:plc:bob", rkey="lk1", created_at=CREATED)
        )

        body = recorder.requests[0][1]
        assert [item["sql"] for item in body] == [sql.DELETE_LIKE_SQL, sql.INSERT_LIKE_SQL]
        assert body[1]["params"] == ["at://s", "did:plc:bob", "lk1", int(CREATED.timestamp())]

    @pytest.mark.asyncio
    async def test_read_rows(self):
        """Reads map result rows back to records."""
        row = {
            "uri": "at://did:plc:abc/com.jjalcloud.feed.gif/xyz",
            "cid": "bafy1",
            "author": "did:plc:abc",
            "title": "cat",
            "alt": None,
            "tags": '["cat"]',
            "file": '{"ref": "x"}',
            "width": None,
            "height": None,
            "created_at": int(CREATED.timestamp()),
        }
        store = make_store(Recorder(lambda body: ok([row])))
        await store.initialize()

        fetched = await store.get_gif(row["uri"])

        assert isinstance(fetched, GifRecord)
        assert fetched.tags == ["cat"]
        assert fetched.created_at == CREATED

    @pytest.mark.asyncio
    async def test_known_identities(self):
        store = make_store(Recorder(lambda body: ok([{"did": "did:plc:a"}, {"did": "did:plc:b"}])))
        await store.initialize()

        assert await store.list_known_identities() == ["did:plc:a", "did:plc:b"]

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        """Non-2xx responses raise StoreQueryError with the status."""
        store = make_store(Recorder(lambda body: httpx.Response(500, text="internal error")))
        await store.initialize()

        with pytest.raises(StoreQueryError) as exc_info:
            await store.delete_gif("a")

        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_unsuccessful_body_raises(self):
        """success=false fails the call even with a 200."""
        store = make_store(
            Recorder(
                lambda body: httpx.Response(
                    200,
                    json={"result": [], "success": False, "errors": [{"code": 7500}]},
                )
            )
        )
        await store.initialize()

        with pytest.raises(StoreQueryError) as exc_info:
            await store.execute_batch([sql.delete_gif("a")])

        assert exc_info.value.errors == [{"code": 7500}]

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        store = make_store(Recorder())

        with pytest.raises(StoreError, match="not initialized"):
            await store.delete_gif("a")
