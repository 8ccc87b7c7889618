"""
Backfill CLI tool for the jjalcloud indexer.

Reconciles the configured store against repository listings for a set of
identities, or for every identity the store already knows about.

Usage:
    jjalcloud-backfill [--dids did1,did2] [--pds-url URL] [-v]

Store selection and credentials come from the same environment variables
as the indexer (see config.py).

Invariants:
    - Backfill is idempotent (can be re-run safely)
    - Local rows are only removed after a complete listing
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys

from ..config import IndexerConfig
from ..ingest import Backfiller, BackfillSummary, RepoClient
from ..store import create_store

logger = logging.getLogger(__name__)


def parse_dids(value: str | None) -> list[str] | None:
    """Split a comma-separated DID list; None when nothing usable was given."""
    if not value:
        return None
    dids = [did.strip() for did in value.split(",") if did.strip()]
    return dids or None


async def run_backfill(config: IndexerConfig, dids: list[str] | None = None) -> BackfillSummary:
    """Open the store and repository client, run one backfill, close both."""
    store = create_store(config)
    await store.initialize()
    try:
        async with RepoClient(
            config.backfill.pds_url,
            timeout_seconds=config.backfill.timeout_seconds,
        ) as repo_client:
            backfiller = Backfiller(store, repo_client, page_limit=config.backfill.page_limit)
            return await backfiller.run(dids)
    finally:
        await store.close()


def main() -> None:
    """CLI entry point for the backfill tool."""
    parser = argparse.ArgumentParser(
        description="Backfill jjalcloud records from AT Protocol repositories"
    )
    parser.add_argument(
        "--dids",
        help="Comma-separated DIDs to backfill (default: every identity in the store)",
    )
    parser.add_argument("--pds-url", help="PDS base URL (default: PDS_URL or https://bsky.social)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = IndexerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.pds_url:
        config.backfill = dataclasses.replace(config.backfill, pds_url=args.pds_url)

    summary = asyncio.run(run_backfill(config, parse_dids(args.dids)))

    print("Backfill completed")
    print(f"  Identities: {summary.identity_count}")
    print(f"  GIFs: {summary.total_gifs}")
    print(f"  Likes: {summary.total_likes}")
    print(f"  Orphans removed: {summary.orphans_removed}")
    if summary.failed_identities:
        print(f"  Failed identities: {', '.join(summary.failed_identities)}")
    sys.exit(0)


if __name__ == "__main__":
    main()
