"""
Jetstream event stream consumption.

This module provides:
- CommitEvent and frame parsing
- zstd frame decompression with the Jetstream shared dictionary
- JetstreamClient, a resumable WebSocket consumer with reconnect backoff

Invariants:
    - Events reach the handler in arrival order within one connection
    - The cursor advances on every frame, not only commits
    - Per-message failures never close the connection
"""

from .base import (
    CommitEvent,
    EventKind,
    Operation,
    StreamDecodeError,
    StreamError,
    parse_frame,
)
from .compression import ZstdDictionaryDecompressor
from .jetstream import ClientState, JetstreamClient

__all__ = [
    # Types
    "CommitEvent",
    "EventKind",
    "Operation",
    "parse_frame",
    # Errors
    "StreamError",
    "StreamDecodeError",
    # Components
    "ZstdDictionaryDecompressor",
    "JetstreamClient",
    "ClientState",
]
