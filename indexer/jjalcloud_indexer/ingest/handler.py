"""
Commit handler: routes Jetstream commit events to the record writer.

    gif  create/update -> upsert_gif        gif  delete -> delete_gif(uri)
    like create/update -> insert_like       like delete -> delete_like(did, rkey)

Commits for other collections are ignored. Records that fail validation
are logged and skipped. Writer errors propagate to the stream client,
which logs them per message and keeps consuming.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..config import GIF_COLLECTION, LIKE_COLLECTION
from ..stream.base import CommitEvent, Operation
from .records import InvalidRecordError, gif_from_record, like_from_record
from .writer import RecordWriter

logger = logging.getLogger(__name__)


class CommitHandler:
    """Async callable handed to JetstreamClient."""

    def __init__(
        self,
        writer: RecordWriter,
        collections: Iterable[str] = (GIF_COLLECTION, LIKE_COLLECTION),
    ) -> None:
        self.writer = writer
        self.collections = frozenset(collections)

        self._indexed_count = 0
        self._deleted_count = 0
        self._skipped_count = 0
        self._ignored_count = 0

    async def __call__(self, event: CommitEvent) -> None:
        if event.collection not in self.collections:
            self._ignored_count += 1
            return

        if event.collection == GIF_COLLECTION:
            await self._handle_gif(event)
        elif event.collection == LIKE_COLLECTION:
            await self._handle_like(event)
        else:
            self._ignored_count += 1

    async def _handle_gif(self, event: CommitEvent) -> None:
        if event.operation == Operation.DELETE:
            logger.info("Deleting GIF", extra={"uri": event.uri})
            await self.writer.delete_gif(event.uri)
            self._deleted_count += 1
            return

        try:
            record = gif_from_record(event.uri, event.cid, event.did, event.record or {})
        except InvalidRecordError as e:
            self._skipped_count += 1
            logger.warning(f"Skipping GIF commit: {e}", extra={"uri": event.uri})
            return

        logger.info(
            "Indexing GIF",
            extra={"uri": event.uri, "operation": event.operation.value},
        )
        await self.writer.upsert_gif(record)
        self._indexed_count += 1

    async def _handle_like(self, event: CommitEvent) -> None:
        if event.operation == Operation.DELETE:
            logger.info("Deleting like", extra={"did": event.did, "rkey": event.rkey})
            await self.writer.delete_like(event.did, event.rkey)
            self._deleted_count += 1
            return

        try:
            record = like_from_record(event.did, event.rkey, event.record or {})
        except InvalidRecordError as e:
            self._skipped_count += 1
            logger.warning(f"Skipping like commit: {e}", extra={"uri": event.uri})
            return

        logger.info(
            "Indexing like",
            extra={"did": event.did, "rkey": event.rkey, "subject": record.subject},
        )
        await self.writer.insert_like(record)
        self._indexed_count += 1

    @property
    def stats(self) -> dict[str, Any]:
        """Get handler statistics."""
        return {
            "indexed_count": self._indexed_count,
            "deleted_count": self._deleted_count,
            "skipped_count": self._skipped_count,
            "ignored_count": self._ignored_count,
        }
