"""
jjalcloud indexer - Jetstream ingestion and reconciliation for jjalcloud.

This package keeps the jjalcloud relational store in sync with GIF and like
records published to AT Protocol repositories:
- Jetstream (JSON firehose) as the live change feed
- Per-user repository listings as the authoritative snapshot
- SQLite (local file or Cloudflare D1 over HTTP) as the derived view

Architecture:
    ┌─────────────┐     ┌─────────────────┐     ┌─────────────────┐
    │  Jetstream  │────▶│ JetstreamClient │────▶│  CommitHandler  │
    │  (wss://)   │     │ (cursor, zstd)  │     │                 │
    └─────────────┘     └─────────────────┘     └────────┬────────┘
                                                         │
                                          ┌──────────────┴──────────────┐
                                          ▼                             ▼
                                   ┌─────────────┐              ┌──────────────┐
                                   │ Immediate   │              │ EventBatcher │
                                   │ Writer      │              │ (size/time)  │
                                   └──────┬──────┘              └──────┬───────┘
                                          └──────────────┬─────────────┘
                                                         ▼
    ┌─────────────┐     ┌─────────────────┐     ┌─────────────────┐
    │  PDS repo   │────▶│   Backfiller    │────▶│  DurableStore   │
    │ listRecords │     │ (orphan diff)   │     │ (SQLite / D1)   │
    └─────────────┘     └─────────────────┘     └─────────────────┘

Invariants:
    - Repositories are the source of truth; the store can be rebuilt by backfill
    - Every write is an idempotent upsert or delete keyed by the record's natural key
    - Orphans are only deleted after a complete, error-free remote listing
    - One bad message never closes the stream connection

How to change safely:
    - New record kinds need a statement builder, a writer method and a backfill pass
    - Keep gif and like keys disjoint so batch ordering stays irrelevant
    - Test replay of duplicate events against both store backends
"""

from ._version import __version__

__all__ = ["__version__"]
