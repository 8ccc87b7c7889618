"""
Cloudflare D1 store accessed through the D1 HTTP query API.

Every operation is a POST to:

    {base_url}/accounts/{account_id}/d1/database/{database_id}/query

with either one {"sql", "params"} object or, for batches, a JSON array of
them. Responses look like:

    {"result": [{"results": [...], "success": true, "meta": {...}}],
     "success": true, "errors": [], "messages": []}

Invariants:
    - The API token is sent only as a bearer header and never logged
    - A non-2xx status or success=false fails the whole call with StoreQueryError
    - Batched statements execute in order; D1 does not promise atomicity here
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from . import statements as sql
from .base import GifRecord, LikeRecord, Statement, StoreError, StoreQueryError

logger = logging.getLogger(__name__)


class D1HttpStore:
    """DurableStore backed by a remote D1 database.

    Example:
        >>> store = D1HttpStore(account_id, database_id, api_token)
        >>> await store.initialize()
        >>> await store.execute_batch([stmt1, stmt2])
        >>> await store.close()
    """

    def __init__(
        self,
        account_id: str,
        database_id: str,
        api_token: str,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the D1 store.

        Args:
            account_id: Cloudflare account ID
            database_id: D1 database ID
            api_token: API token (secret)
            base_url: API base URL
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (used by tests)
        """
        self.account_id = account_id
        self.database_id = database_id
        self.query_url = (
            f"{base_url.rstrip('/')}/accounts/{account_id}/d1/database/{database_id}/query"
        )
        self._api_token = api_token
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        """Open the HTTP client. The schema is owned by the web app's migrations."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {self._api_token}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )
        logger.info("Using D1 HTTP API", extra={"database_id": self.database_id})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, body: Any) -> list[dict[str, Any]]:
        """POST a query body and return the per-statement result list."""
        if self._client is None:
            raise StoreError("D1 store not initialized")

        try:
            response = await self._client.post(self.query_url, json=body)
        except httpx.HTTPError as e:
            raise StoreQueryError(f"D1 request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "D1 API error",
                extra={"status": response.status_code, "error": response.text[:500]},
            )
            raise StoreQueryError(
                f"D1 API error: {response.status_code} - {response.text[:500]}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise StoreQueryError(
                f"D1 API returned invalid JSON: {e}", status=response.status_code
            ) from e

        if not data.get("success"):
            errors = data.get("errors") or []
            logger.error("D1 query failed", extra={"errors": errors})
            raise StoreQueryError(
                f"D1 query failed: {errors}", status=response.status_code, errors=errors
            )

        return data.get("result") or []

    async def query(self, stmt: Statement) -> list[dict[str, Any]]:
        """Run one statement and return its rows."""
        logger.debug("Executing D1 query", extra={"sql": stmt.sql.strip()[:200]})
        results = await self._post(stmt.to_dict())
        if not results:
            return []
        return results[0].get("results") or []

    async def execute_batch(self, statements: Sequence[Statement]) -> None:
        if not statements:
            return
        await self._post([stmt.to_dict() for stmt in statements])

    async def upsert_gif(self, record: GifRecord) -> None:
        await self.query(sql.upsert_gif(record))

    async def delete_gif(self, uri: str) -> None:
        await self.query(sql.delete_gif(uri))

    async def insert_like(self, record: LikeRecord) -> None:
        await self.execute_batch(sql.insert_like(record))

    async def delete_like(self, author: str, rkey: str) -> None:
        await self.query(sql.delete_like(author, rkey))

    async def get_gif(self, uri: str) -> GifRecord | None:
        rows = await self.query(Statement(sql.SELECT_GIF_SQL, (uri,)))
        return sql.gif_from_row(rows[0]) if rows else None

    async def get_like(self, author: str, rkey: str) -> LikeRecord | None:
        rows = await self.query(Statement(sql.SELECT_LIKE_SQL, (author, rkey)))
        return sql.like_from_row(rows[0]) if rows else None

    async def list_gif_uris(self, author: str) -> list[str]:
        rows = await self.query(Statement(sql.LIST_GIF_URIS_SQL, (author,)))
        return [row["uri"] for row in rows]

    async def list_like_rkeys(self, author: str) -> list[str]:
        rows = await self.query(Statement(sql.LIST_LIKE_RKEYS_SQL, (author,)))
        return [row["rkey"] for row in rows]

    async def list_known_identities(self) -> list[str]:
        rows = await self.query(Statement(sql.LIST_KNOWN_IDENTITIES_SQL))
        return [row["did"] for row in rows]
