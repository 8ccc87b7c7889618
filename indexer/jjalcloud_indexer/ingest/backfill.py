"""
Backfill and reconciliation against repository listings.

For each identity the Backfiller pages through com.atproto.repo.listRecords
for the gif and like collections, upserts every listed record directly into
the store, and then removes local rows that the repository no longer has.

Invariants:
    - Orphans are deleted only after a listing reached its final page
      (no cursor). Any failed page leaves local rows untouched
    - Every listed record counts as present, even if writing it failed
    - Failure of one identity never stops the others
    - With no identities to process, no network request is made

How to change safely:
    - Identifier sets are held in memory per identity and collection;
      very large repositories need a streaming diff instead
    - Writes bypass the live batcher on purpose so a backfill summary
      reflects what is actually in the store
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from ..config import GIF_COLLECTION, LIKE_COLLECTION
from ..store.base import DurableStore
from .records import InvalidRecordError, gif_from_record, like_from_record, rkey_from_uri
from .repo_client import RepoClient, RepoFetchError, RepoRecord

logger = logging.getLogger(__name__)

RecordApplier = Callable[[RepoRecord], Awaitable[None]]
RecordIdentifier = Callable[[RepoRecord], str | None]


@dataclass
class ReconciliationResult:
    """Outcome of listing and applying one collection for one identity.

    Attributes:
        count: Records written successfully
        remote_ids: Identifiers of every record the repository listed
        completed_fully: True only if the last page had no cursor
        failed: Records that could not be written or were invalid
    """

    count: int = 0
    remote_ids: set[str] = field(default_factory=set)
    completed_fully: bool = False
    failed: int = 0


@dataclass
class BackfillSummary:
    total_gifs: int = 0
    total_likes: int = 0
    orphans_removed: int = 0
    identity_count: int = 0
    failed_identities: list[str] = field(default_factory=list)


def _uri_of(record: RepoRecord) -> str | None:
    return record.uri


def _rkey_of(record: RepoRecord) -> str | None:
    return rkey_from_uri(record.uri)


class Backfiller:
    """Reconciles the store with the repositories of known identities.

    Example:
        >>> async with RepoClient(pds_url) as repo_client:
        ...     summary = await Backfiller(store, repo_client).run()
    """

    def __init__(
        self,
        store: DurableStore,
        repo_client: RepoClient,
        page_limit: int = 100,
    ) -> None:
        self.store = store
        self.repo_client = repo_client
        self.page_limit = page_limit

    async def run(self, dids: Iterable[str] | None = None) -> BackfillSummary:
        """Backfill the given identities, or every known identity.

        Returns:
            Totals across all processed identities
        """
        targets = list(dict.fromkeys(dids)) if dids else []

        if not targets:
            logger.info("No DIDs provided, fetching known identities from the store")
            targets = await self.store.list_known_identities()
            if not targets:
                logger.warning(
                    "No identities found in the store. Provide DIDs with --dids "
                    "or index some records first."
                )
                return BackfillSummary()

        summary = BackfillSummary(identity_count=len(targets))
        logger.info("Starting backfill", extra={"count": len(targets)})

        for did in targets:
            logger.info("Backfilling identity", extra={"did": did})
            try:
                gifs, likes, orphans = await self.reconcile_identity(did)
            except Exception as e:
                summary.failed_identities.append(did)
                logger.error(f"Failed to backfill identity: {e}", exc_info=True, extra={"did": did})
                continue

            summary.total_gifs += gifs.count
            summary.total_likes += likes.count
            summary.orphans_removed += orphans

        logger.info(
            "Backfill completed",
            extra={
                "total_gifs": summary.total_gifs,
                "total_likes": summary.total_likes,
                "orphans_removed": summary.orphans_removed,
                "identity_count": summary.identity_count,
                "failed_identities": len(summary.failed_identities),
            },
        )
        return summary

    async def reconcile_identity(
        self, did: str
    ) -> tuple[ReconciliationResult, ReconciliationResult, int]:
        """Backfill both collections for one identity and remove orphans.

        Returns:
            (gif result, like result, orphans removed)
        """

        async def apply_gif(record: RepoRecord) -> None:
            await self.store.upsert_gif(gif_from_record(record.uri, record.cid, did, record.value))

        async def apply_like(record: RepoRecord) -> None:
            rkey = rkey_from_uri(record.uri)
            await self.store.insert_like(like_from_record(did, rkey or "", record.value))

        gifs = await self.backfill_collection(did, GIF_COLLECTION, apply_gif, identify=_uri_of)
        likes = await self.backfill_collection(did, LIKE_COLLECTION, apply_like, identify=_rkey_of)

        orphans = await self._remove_orphans(
            did, GIF_COLLECTION, gifs, self.store.list_gif_uris, self._delete_gif
        )
        orphans += await self._remove_orphans(
            did, LIKE_COLLECTION, likes, self.store.list_like_rkeys, self.store.delete_like
        )
        return gifs, likes, orphans

    async def backfill_collection(
        self,
        did: str,
        collection: str,
        apply: RecordApplier,
        identify: RecordIdentifier = _uri_of,
    ) -> ReconciliationResult:
        """Page through one collection, applying each listed record."""
        result = ReconciliationResult()
        cursor: str | None = None

        while True:
            try:
                page = await self.repo_client.list_records(
                    did, collection, limit=self.page_limit, cursor=cursor
                )
            except RepoFetchError as e:
                logger.warning(
                    f"Could not fetch collection: {e}",
                    extra={"did": did, "collection": collection, "status": e.status},
                )
                return result

            for record in page.records:
                identifier = identify(record)
                if identifier is None:
                    result.failed += 1
                    logger.warning("Could not extract rkey from URI, skipping", extra={"uri": record.uri})
                    continue
                result.remote_ids.add(identifier)

                try:
                    await apply(record)
                except InvalidRecordError as e:
                    result.failed += 1
                    logger.warning(f"Skipping invalid record: {e}", extra={"uri": record.uri})
                    continue
                except Exception as e:
                    result.failed += 1
                    logger.debug(
                        f"Failed to write record: {e}",
                        extra={"uri": record.uri, "collection": collection},
                    )
                    continue

                result.count += 1
                logger.debug("Backfilled record", extra={"uri": record.uri, "collection": collection})

            if not page.cursor:
                result.completed_fully = True
                break
            if page.cursor == cursor:
                logger.warning(
                    "listRecords returned the same cursor twice, stopping",
                    extra={"did": did, "collection": collection, "cursor": cursor},
                )
                return result
            cursor = page.cursor

        if result.count > 0:
            logger.info(
                "Backfilled collection",
                extra={"did": did, "collection": collection, "count": result.count},
            )
        return result

    async def _delete_gif(self, did: str, uri: str) -> None:
        await self.store.delete_gif(uri)

    async def _remove_orphans(
        self,
        did: str,
        collection: str,
        result: ReconciliationResult,
        list_local: Callable[[str], Awaitable[list[str]]],
        delete: Callable[[str, str], Awaitable[None]],
    ) -> int:
        if not result.completed_fully:
            logger.info(
                "Skipping orphan cleanup, listing incomplete",
                extra={"did": did, "collection": collection},
            )
            return 0

        local_ids = set(await list_local(did))
        orphans = sorted(local_ids - result.remote_ids)
        removed = 0
        for identifier in orphans:
            try:
                await delete(did, identifier)
            except Exception as e:
                logger.warning(
                    f"Failed to delete orphan: {e}",
                    extra={"did": did, "collection": collection, "id": identifier},
                )
                continue
            removed += 1

        if removed:
            logger.info(
                "Removed orphaned records",
                extra={"did": did, "collection": collection, "count": removed},
            )
        return removed
