"""
Durable store for indexed jjalcloud records.

This module provides:
- The DurableStore protocol and GifRecord / LikeRecord rows
- LocalStore: embedded SQLite file
- D1HttpStore: Cloudflare D1 through its HTTP query API
- create_store(): backend selection from configuration

Invariants:
    - Both backends run the same SQL (see statements.py)
    - Upserts and deletes are idempotent by natural key
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    DurableStore,
    GifRecord,
    LikeRecord,
    Statement,
    StoreError,
    StoreQueryError,
)
from .d1 import D1HttpStore
from .local import LocalStore

if TYPE_CHECKING:
    from ..config import IndexerConfig


def create_store(config: "IndexerConfig") -> DurableStore:
    """Factory function to create a store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend

    if config.store_backend == StoreBackend.LOCAL:
        return LocalStore(
            db_path=config.local.db_path,
            wal_mode=config.local.wal_mode,
            busy_timeout_ms=config.local.busy_timeout_ms,
        )
    elif config.store_backend == StoreBackend.D1:
        return D1HttpStore(
            account_id=config.d1.account_id or "",
            database_id=config.d1.database_id or "",
            api_token=config.d1.api_token or "",
            base_url=config.d1.base_url,
            timeout_seconds=config.d1.timeout_seconds,
        )
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")


__all__ = [
    # Protocol and types
    "DurableStore",
    "GifRecord",
    "LikeRecord",
    "Statement",
    "StoreError",
    "StoreQueryError",
    # Factory
    "create_store",
    # Implementations
    "LocalStore",
    "D1HttpStore",
]
