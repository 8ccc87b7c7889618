"""
Durable store protocol and row types.

Both store backends (local SQLite file, Cloudflare D1 over HTTP) expose the
same async interface so the stream handler, batcher and backfiller never
care which one is configured.

Invariants:
    - gifs are keyed by AT URI; upsert by URI is idempotent
    - likes are keyed by (author, rkey); insert replaces any existing row
    - Deleting a missing row is not an error
    - execute_batch runs statements in the order given; callers must not
      assume the batch as a whole is atomic
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence, runtime_checkable


class StoreError(Exception):
    """Base exception for durable store operations."""

    pass


class StoreQueryError(StoreError):
    """A statement or batch failed at the backend.

    Attributes:
        status: HTTP status for remote backends, None for local ones
        errors: Backend-reported error details
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        errors: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.errors = errors or []


@dataclass(frozen=True)
class Statement:
    """A parametrized SQL statement."""

    sql: str
    params: tuple[Any, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"sql": self.sql, "params": list(self.params)}


@dataclass
class GifRecord:
    """An indexed com.jjalcloud.feed.gif record.

    Attributes:
        uri: AT URI (primary key)
        cid: Record CID
        author: Repository DID
        file: Blob reference as stored in the record
        created_at: Record createdAt
        title: Optional title
        alt: Optional alt text
        tags: Optional tag list
        width: Optional width in pixels
        height: Optional height in pixels
    """

    uri: str
    cid: str
    author: str
    file: Any
    created_at: datetime
    title: str | None = None
    alt: str | None = None
    tags: list[str] | None = field(default=None)
    width: int | None = None
    height: int | None = None


@dataclass
class LikeRecord:
    """An indexed com.jjalcloud.feed.like record.

    Attributes:
        subject: URI of the liked GIF
        author: DID of the liking user
        rkey: Record key of the like itself
        created_at: Record createdAt
    """

    subject: str
    author: str
    rkey: str
    created_at: datetime


@runtime_checkable
class DurableStore(Protocol):
    """Protocol for durable store backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (schema, HTTP client)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""
        ...

    @abstractmethod
    async def upsert_gif(self, record: GifRecord) -> None:
        """Insert a gif or overwrite every mutable field of the existing row."""
        ...

    @abstractmethod
    async def delete_gif(self, uri: str) -> None:
        ...

    @abstractmethod
    async def insert_like(self, record: LikeRecord) -> None:
        """Insert a like, replacing any row with the same (author, rkey)."""
        ...

    @abstractmethod
    async def delete_like(self, author: str, rkey: str) -> None:
        ...

    @abstractmethod
    async def get_gif(self, uri: str) -> GifRecord | None:
        ...

    @abstractmethod
    async def get_like(self, author: str, rkey: str) -> LikeRecord | None:
        ...

    @abstractmethod
    async def list_gif_uris(self, author: str) -> list[str]:
        """All gif URIs stored for an author."""
        ...

    @abstractmethod
    async def list_like_rkeys(self, author: str) -> list[str]:
        """All like rkeys stored for an author."""
        ...

    @abstractmethod
    async def list_known_identities(self) -> list[str]:
        """Distinct DIDs from users, gif authors and like authors."""
        ...

    @abstractmethod
    async def execute_batch(self, statements: Sequence[Statement]) -> None:
        """Execute statements in order as one backend call.

        Raises:
            StoreQueryError: If the batch fails
        """
        ...
