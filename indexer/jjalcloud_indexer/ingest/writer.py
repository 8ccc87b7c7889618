"""
Record writer strategies for the live path.

The commit handler writes through a RecordWriter so it does not care
whether writes hit the store immediately or are batched.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from ..config import BatchConfig
from ..store.base import DurableStore, GifRecord, LikeRecord
from .batcher import EventBatcher


@runtime_checkable
class RecordWriter(Protocol):
    """Write path shared by the live handler."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release resources, draining anything pending."""
        ...

    @abstractmethod
    async def upsert_gif(self, record: GifRecord) -> None:
        ...

    @abstractmethod
    async def delete_gif(self, uri: str) -> None:
        ...

    @abstractmethod
    async def insert_like(self, record: LikeRecord) -> None:
        ...

    @abstractmethod
    async def delete_like(self, author: str, rkey: str) -> None:
        ...


class ImmediateWriter:
    """Writes each operation straight to the store."""

    def __init__(self, store: DurableStore) -> None:
        self.store = store

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def upsert_gif(self, record: GifRecord) -> None:
        await self.store.upsert_gif(record)

    async def delete_gif(self, uri: str) -> None:
        await self.store.delete_gif(uri)

    async def insert_like(self, record: LikeRecord) -> None:
        await self.store.insert_like(record)

    async def delete_like(self, author: str, rkey: str) -> None:
        await self.store.delete_like(author, rkey)


class BatchedWriter:
    """Queues operations on an EventBatcher.

    Store failures surface in the batcher's flush log, not to the caller.
    """

    def __init__(self, batcher: EventBatcher) -> None:
        self.batcher = batcher

    async def start(self) -> None:
        self.batcher.start()

    async def stop(self) -> None:
        await self.batcher.stop()

    async def upsert_gif(self, record: GifRecord) -> None:
        self.batcher.queue_gif_upsert(record)

    async def delete_gif(self, uri: str) -> None:
        self.batcher.queue_gif_delete(uri)

    async def insert_like(self, record: LikeRecord) -> None:
        self.batcher.queue_like_insert(record)

    async def delete_like(self, author: str, rkey: str) -> None:
        self.batcher.queue_like_delete(author, rkey)


def create_writer(store: DurableStore, config: BatchConfig) -> RecordWriter:
    """Pick the write strategy from configuration."""
    if config.enabled:
        return BatchedWriter(
            EventBatcher(
                store,
                max_batch_size=config.max_batch_size,
                flush_interval_ms=config.flush_interval_ms,
            )
        )
    return ImmediateWriter(store)
