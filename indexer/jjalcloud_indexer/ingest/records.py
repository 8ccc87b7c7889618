"""
Translation from lexicon record values to store rows.

Used by both the live commit handler and the backfiller so that a record
indexed from the stream and the same record indexed from a repository
listing produce identical rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..store.base import GifRecord, LikeRecord

logger = logging.getLogger(__name__)


class InvalidRecordError(ValueError):
    """A record value is missing fields required for indexing."""

    pass


def parse_created_at(value: Any) -> datetime:
    """Parse a record's createdAt, falling back to now when absent or invalid."""
    if isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("Unparseable createdAt, using current time", extra={"value": value})
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def gif_from_record(uri: str, cid: str | None, author: str, value: dict[str, Any]) -> GifRecord:
    """Build a GifRecord from a com.jjalcloud.feed.gif record value.

    Raises:
        InvalidRecordError: If the CID or blob reference is missing
    """
    if not cid:
        raise InvalidRecordError(f"GIF record has no CID: {uri}")
    file = value.get("file")
    if not file:
        raise InvalidRecordError(f"GIF record has no file blob: {uri}")

    tags = value.get("tags")
    if isinstance(tags, list):
        tags = [tag for tag in tags if isinstance(tag, str)]
    else:
        tags = None

    return GifRecord(
        uri=uri,
        cid=cid,
        author=author,
        file=file,
        created_at=parse_created_at(value.get("createdAt")),
        title=_optional_str(value.get("title")),
        alt=_optional_str(value.get("alt")),
        tags=tags,
        width=_optional_int(value.get("width")),
        height=_optional_int(value.get("height")),
    )


def like_from_record(author: str, rkey: str, value: dict[str, Any]) -> LikeRecord:
    """Build a LikeRecord from a com.jjalcloud.feed.like record value.

    Raises:
        InvalidRecordError: If subject.uri is missing
    """
    subject = value.get("subject")
    subject_uri = subject.get("uri") if isinstance(subject, dict) else None
    if not isinstance(subject_uri, str) or not subject_uri:
        raise InvalidRecordError("Like record missing subject URI")

    return LikeRecord(
        subject=subject_uri,
        author=author,
        rkey=rkey,
        created_at=parse_created_at(value.get("createdAt")),
    )


def rkey_from_uri(uri: str) -> str | None:
    """Last path segment of an AT URI, or None if it is empty."""
    if "/" not in uri:
        return None
    return uri.rsplit("/", 1)[1] or None
