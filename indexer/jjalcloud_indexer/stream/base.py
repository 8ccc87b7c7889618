"""
Types and errors for the Jetstream event stream.

Jetstream frames are JSON objects of three kinds:

    {"did": ..., "time_us": ..., "kind": "commit",
     "commit": {"rev", "operation", "collection", "rkey", "record"?, "cid"?}}
    {"did": ..., "time_us": ..., "kind": "identity", "identity": {...}}
    {"did": ..., "time_us": ..., "kind": "account", "account": {...}}

Only commit frames are turned into CommitEvent objects; identity and
account frames are parsed just far enough to advance the cursor.

Invariants:
    - CommitEvent is immutable and built fresh per frame
    - create/update commits always carry a record; deletes never do
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class StreamError(Exception):
    """Base exception for event stream operations."""

    pass


class StreamDecodeError(StreamError):
    """A frame could not be decompressed, decoded or parsed."""

    pass


class EventKind(Enum):
    """Top-level Jetstream frame kinds."""

    COMMIT = "commit"
    IDENTITY = "identity"
    ACCOUNT = "account"


class Operation(Enum):
    """Commit operation types."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class CommitEvent:
    """One change to one record in one repository.

    Attributes:
        did: Repository owner
        time_us: Jetstream event time (microseconds since epoch)
        collection: Record collection NSID
        rkey: Record key within the collection
        operation: create, update or delete
        rev: Repository revision of the commit
        record: Record value (create/update only)
        cid: Record CID (create/update only)
    """

    did: str
    time_us: int
    collection: str
    rkey: str
    operation: Operation
    rev: str | None = None
    record: dict[str, Any] | None = None
    cid: str | None = None

    @property
    def uri(self) -> str:
        """AT URI of the changed record."""
        return f"at://{self.did}/{self.collection}/{self.rkey}"

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> CommitEvent:
        """Build a CommitEvent from a parsed commit frame.

        Raises:
            StreamDecodeError: If required fields are missing or malformed
        """
        commit = frame.get("commit")
        if not isinstance(commit, dict):
            raise StreamDecodeError("Commit frame has no commit body")

        missing = [f for f in ("collection", "rkey", "operation") if not commit.get(f)]
        if not frame.get("did"):
            missing.append("did")
        if missing:
            raise StreamDecodeError(f"Commit frame missing fields: {missing}")

        try:
            operation = Operation(commit["operation"])
        except ValueError:
            raise StreamDecodeError(f"Unknown commit operation: {commit['operation']}")

        record = commit.get("record")
        if operation != Operation.DELETE and not isinstance(record, dict):
            raise StreamDecodeError(f"{operation.value} commit without a record")

        return cls(
            did=frame["did"],
            time_us=int(frame.get("time_us") or 0),
            collection=commit["collection"],
            rkey=commit["rkey"],
            operation=operation,
            rev=commit.get("rev"),
            record=record if operation != Operation.DELETE else None,
            cid=commit.get("cid"),
        )


def parse_frame(raw: bytes | str) -> dict[str, Any]:
    """Decode a frame payload into a JSON object.

    Raises:
        StreamDecodeError: If the payload is not a UTF-8 JSON object
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StreamDecodeError(f"Failed to parse frame as JSON: {e}") from e

    if not isinstance(data, dict):
        raise StreamDecodeError(f"Expected JSON object, got {type(data).__name__}")
    return data
