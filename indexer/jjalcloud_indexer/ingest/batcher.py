"""
Write batching for the live ingestion path.

The EventBatcher collects pending gif/like writes in memory and drains them
to the store as one execute_batch call, either when the pending count
reaches max_batch_size or every flush_interval_ms, whichever comes first.

Invariants:
    - At most one flush runs at a time; a flush requested while another is
      running is a no-op, and its work is picked up by the next flush
    - Pending lists are swapped out in one step before any await, so writes
      queued during a flush land in the next batch
    - Statement order within a kind follows queue order
    - A failed batch is logged and dropped, never re-queued

How to change safely:
    - Keep gif and like keys disjoint; inter-kind ordering is not preserved
    - Retrying failed batches changes delivery semantics, see DESIGN.md
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..store import statements as sql
from ..store.base import DurableStore, GifRecord, LikeRecord, Statement

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 50
DEFAULT_FLUSH_INTERVAL_MS = 500


class EventBatcher:
    """Size- and time-triggered write batcher.

    Example:
        >>> batcher = EventBatcher(store, max_batch_size=50, flush_interval_ms=500)
        >>> batcher.start()
        >>> batcher.queue_gif_upsert(record)
        >>> await batcher.stop()  # final flush
    """

    def __init__(
        self,
        store: DurableStore,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
    ) -> None:
        self.store = store
        self.max_batch_size = max_batch_size
        self.flush_interval_ms = flush_interval_ms

        self._gif_upserts: list[GifRecord] = []
        self._gif_deletes: list[str] = []
        self._like_inserts: list[LikeRecord] = []
        self._like_deletes: list[tuple[str, str]] = []

        self._flushing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._timer_task: asyncio.Task | None = None
        self._threshold_task: asyncio.Task | None = None

        self._flush_count = 0
        self._failed_flush_count = 0
        self._flushed_ops = 0
        self._dropped_ops = 0

    @property
    def pending_count(self) -> int:
        return (
            len(self._gif_upserts)
            + len(self._gif_deletes)
            + len(self._like_inserts)
            + len(self._like_deletes)
        )

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    def start(self) -> None:
        """Start the periodic flush timer."""
        if self._timer_task is not None:
            logger.warning("Batcher already running")
            return
        self._timer_task = asyncio.create_task(self._flush_loop(), name="batcher-flush")
        logger.info(
            "Started event batcher",
            extra={
                "max_batch_size": self.max_batch_size,
                "flush_interval_ms": self.flush_interval_ms,
            },
        )

    async def stop(self) -> None:
        """Cancel the timer and drain everything still pending."""
        timer, self._timer_task = self._timer_task, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

        await self._idle.wait()
        await self.flush()

    def queue_gif_upsert(self, record: GifRecord) -> None:
        self._gif_upserts.append(record)
        self._flush_if_needed()

    def queue_gif_delete(self, uri: str) -> None:
        self._gif_deletes.append(uri)
        self._flush_if_needed()

    def queue_like_insert(self, record: LikeRecord) -> None:
        self._like_inserts.append(record)
        self._flush_if_needed()

    def queue_like_delete(self, author: str, rkey: str) -> None:
        self._like_deletes.append((author, rkey))
        self._flush_if_needed()

    def _flush_if_needed(self) -> None:
        if self.pending_count < self.max_batch_size:
            return
        # One outstanding threshold flush at a time
        if self._threshold_task is not None and not self._threshold_task.done():
            return
        self._threshold_task = asyncio.create_task(
            self._guarded_flush("Threshold flush failed"), name="batcher-threshold-flush"
        )

    async def _guarded_flush(self, message: str) -> None:
        try:
            await self.flush()
        except Exception as e:
            logger.error(f"{message}: {e}", exc_info=True)

    async def _flush_loop(self) -> None:
        """Background loop for periodic flushes."""
        while True:
            await asyncio.sleep(self.flush_interval_ms / 1000.0)
            # Shielded so stop() cannot cancel a batch mid-write
            await asyncio.shield(self._guarded_flush("Periodic flush failed"))

    async def flush(self) -> int:
        """Drain pending writes to the store.

        Returns:
            Number of operations written, 0 if skipped or failed
        """
        if self._flushing or self.pending_count == 0:
            return 0

        self._flushing = True
        self._idle.clear()

        gif_upserts, self._gif_upserts = self._gif_upserts, []
        gif_deletes, self._gif_deletes = self._gif_deletes, []
        like_inserts, self._like_inserts = self._like_inserts, []
        like_deletes, self._like_deletes = self._like_deletes, []

        total = len(gif_upserts) + len(gif_deletes) + len(like_inserts) + len(like_deletes)

        try:
            statements = self._build_statements(
                gif_upserts, gif_deletes, like_inserts, like_deletes
            )
            logger.info(
                "Flushing batch",
                extra={
                    "gif_upserts": len(gif_upserts),
                    "gif_deletes": len(gif_deletes),
                    "like_inserts": len(like_inserts),
                    "like_deletes": len(like_deletes),
                    "total": total,
                },
            )
            await self.store.execute_batch(statements)
        except Exception as e:
            self._failed_flush_count += 1
            self._dropped_ops += total
            logger.error(f"Batch flush failed: {e}", exc_info=True, extra={"total": total})
            return 0
        finally:
            self._flushing = False
            self._idle.set()

        self._flush_count += 1
        self._flushed_ops += total
        return total

    @staticmethod
    def _build_statements(
        gif_upserts: list[GifRecord],
        gif_deletes: list[str],
        like_inserts: list[LikeRecord],
        like_deletes: list[tuple[str, str]],
    ) -> list[Statement]:
        statements: list[Statement] = [sql.upsert_gif(record) for record in gif_upserts]
        statements.extend(sql.delete_gif(uri) for uri in gif_deletes)
        for record in like_inserts:
            statements.extend(sql.insert_like(record))
        statements.extend(sql.delete_like(author, rkey) for author, rkey in like_deletes)
        return statements

    @property
    def stats(self) -> dict[str, Any]:
        """Get batcher statistics."""
        return {
            "pending": self.pending_count,
            "flushing": self._flushing,
            "flush_count": self._flush_count,
            "failed_flush_count": self._failed_flush_count,
            "flushed_ops": self._flushed_ops,
            "dropped_ops": self._dropped_ops,
        }
