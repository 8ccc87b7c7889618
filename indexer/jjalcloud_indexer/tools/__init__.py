"""
CLI tools for jjalcloud indexer administration.

This module provides command-line tools for:
- backfill: Reconcile the store against repository listings

Invariants:
    - Tools work without a running indexer
    - Operations are idempotent
"""

from .backfill_cli import parse_dids, run_backfill

__all__ = ["parse_dids", "run_backfill"]
