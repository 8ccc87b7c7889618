"""
Ingestion: turning stream events and repository listings into store writes.

This module provides:
- CommitHandler: routes live commit events to a RecordWriter
- EventBatcher, ImmediateWriter, BatchedWriter: live write strategies
- RepoClient: listRecords/getRecord over XRPC
- Backfiller: repository reconciliation with gated orphan cleanup
"""

from .backfill import Backfiller, BackfillSummary, ReconciliationResult
from .batcher import EventBatcher
from .handler import CommitHandler
from .records import InvalidRecordError, gif_from_record, like_from_record, rkey_from_uri
from .repo_client import ListRecordsPage, RepoClient, RepoFetchError, RepoRecord
from .writer import BatchedWriter, ImmediateWriter, RecordWriter, create_writer

__all__ = [
    # Live path
    "CommitHandler",
    "EventBatcher",
    "RecordWriter",
    "ImmediateWriter",
    "BatchedWriter",
    "create_writer",
    # Records
    "InvalidRecordError",
    "gif_from_record",
    "like_from_record",
    "rkey_from_uri",
    # Backfill
    "Backfiller",
    "BackfillSummary",
    "ReconciliationResult",
    "RepoClient",
    "RepoFetchError",
    "RepoRecord",
    "ListRecordsPage",
]
