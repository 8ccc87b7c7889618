"""
Minimal XRPC client for reading records out of a repository.

Only the two read endpoints the backfiller needs are implemented:

    GET {pds}/xrpc/com.atproto.repo.listRecords?repo=&collection=&limit=&cursor=
    GET {pds}/xrpc/com.atproto.repo.getRecord?repo=&collection=&rkey=

Invariants:
    - A page without a cursor is the last page
    - Any non-2xx listRecords response raises RepoFetchError; callers treat
      that as an incomplete listing, as does a 2xx body that is not an object
    - An entry with a uri is always returned, even when its value is not an
      object (value is then empty), so callers still see it as listed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import DEFAULT_PDS_URL

logger = logging.getLogger(__name__)

LIST_RECORDS_NSID = "com.atproto.repo.listRecords"
GET_RECORD_NSID = "com.atproto.repo.getRecord"


class RepoFetchError(Exception):
    """A repository read failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class RepoRecord:
    """One record as listed by the PDS."""

    uri: str
    cid: str | None
    value: dict[str, Any]


@dataclass
class ListRecordsPage:
    records: list[RepoRecord] = field(default_factory=list)
    cursor: str | None = None


class RepoClient:
    """Async client for com.atproto.repo read endpoints.

    Example:
        >>> async with RepoClient("https://bsky.social") as client:
        ...     page = await client.list_records(did, "com.jjalcloud.feed.gif")
    """

    def __init__(
        self,
        pds_url: str = DEFAULT_PDS_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.pds_url = pds_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> RepoClient:
        self._get_client()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.pds_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, nsid: str, params: dict[str, Any]) -> httpx.Response:
        try:
            return await self._get_client().get(f"/xrpc/{nsid}", params=params)
        except httpx.HTTPError as e:
            raise RepoFetchError(f"{nsid} request failed: {e}") from e

    async def list_records(
        self,
        repo: str,
        collection: str,
        limit: int = 100,
        cursor: str | None = None,
    ) -> ListRecordsPage:
        """Fetch one page of a collection listing.

        Raises:
            RepoFetchError: On transport failure or a non-2xx response
        """
        params: dict[str, Any] = {"repo": repo, "collection": collection, "limit": limit}
        if cursor:
            params["cursor"] = cursor

        response = await self._get(LIST_RECORDS_NSID, params)
        if not response.is_success:
            raise RepoFetchError(
                f"listRecords failed for {repo}/{collection}: {response.status_code}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RepoFetchError(
                f"listRecords returned invalid JSON: {e}", status=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise RepoFetchError(
                f"listRecords returned a non-object body for {repo}/{collection}",
                status=response.status_code,
            )

        records = []
        for item in data.get("records") or []:
            uri = item.get("uri") if isinstance(item, dict) else None
            if not isinstance(uri, str):
                logger.warning(
                    "Skipping listRecords entry without a uri",
                    extra={"repo": repo, "collection": collection},
                )
                continue
            value = item.get("value")
            if not isinstance(value, dict):
                logger.warning(
                    "listRecords entry has no value object",
                    extra={"repo": repo, "collection": collection, "uri": uri},
                )
                value = {}
            records.append(RepoRecord(uri=uri, cid=item.get("cid"), value=value))

        return ListRecordsPage(records=records, cursor=data.get("cursor") or None)

    async def get_record(self, repo: str, collection: str, rkey: str) -> RepoRecord | None:
        """Fetch one record, or None if the PDS reports it missing.

        Raises:
            RepoFetchError: On transport failure, an unexpected status or a
                body that is not a record
        """
        response = await self._get(
            GET_RECORD_NSID, {"repo": repo, "collection": collection, "rkey": rkey}
        )
        if response.status_code in (400, 404):
            return None
        if not response.is_success:
            raise RepoFetchError(
                f"getRecord failed for {repo}/{collection}/{rkey}: {response.status_code}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RepoFetchError(
                f"getRecord returned invalid JSON: {e}", status=response.status_code
            ) from e
        if not isinstance(data, dict) or not isinstance(data.get("uri"), str):
            raise RepoFetchError(
                f"getRecord returned no record for {repo}/{collection}/{rkey}",
                status=response.status_code,
            )

        value = data.get("value")
        return RepoRecord(
            uri=data["uri"],
            cid=data.get("cid"),
            value=value if isinstance(value, dict) else {},
        )
