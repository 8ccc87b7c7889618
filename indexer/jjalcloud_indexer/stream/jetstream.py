"""
Jetstream subscription client.

The JetstreamClient keeps one WebSocket subscription open against a
Jetstream instance and hands commit events to a handler, one at a time,
in arrival order.

State machine:

    IDLE ──start()──▶ CONNECTING ──open──▶ CONNECTED
                          ▲                    │ close / error
                          │                    ▼
                          └──── backoff ── RECONNECTING

    any state ──destroy()──▶ DESTROYED (terminal)

Invariants:
    - The cursor only moves forward and is advanced by every frame,
      including identity and account frames
    - Reconnects resume from cursor - safety margin (never below 0), so
      events near the cursor are replayed and must be applied idempotently
    - Decode and handler failures are logged per message; they never close
      the connection
    - Only destroy() stops the client; transport failures always reconnect

How to change safely:
    - Keep handler invocation sequential; the store relies on per-connection ordering
    - Never log the full wantedDids list, use masked_url()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import MAX_WANTED_DIDS, JetstreamConfig
from .base import CommitEvent, EventKind, StreamDecodeError, parse_frame
from .compression import ZstdDictionaryDecompressor

logger = logging.getLogger(__name__)

CommitHandlerFn = Callable[[CommitEvent], Awaitable[None]]


class ClientState(Enum):
    """Lifecycle states of a JetstreamClient."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DESTROYED = "destroyed"


class JetstreamClient:
    """Resumable Jetstream consumer with exponential reconnect backoff.

    Attributes:
        config: Jetstream configuration
        state: Current lifecycle state
        cursor: Last seen event time (microseconds), None before the first frame

    Example:
        >>> client = JetstreamClient(config, handler)
        >>> client.start()
        >>> ...
        >>> await client.destroy()
    """

    def __init__(
        self,
        config: JetstreamConfig,
        handler: CommitHandlerFn,
        decompressor: ZstdDictionaryDecompressor | None = None,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Jetstream configuration
            handler: Async callable invoked once per commit event
            decompressor: Frame decompressor; loaded from config when compression
                is enabled and none is given
            connect: WebSocket connect factory (defaults to websockets.connect)
        """
        self.config = config
        self._handler = handler
        self._connect = connect or websockets.connect

        if config.compress and decompressor is None:
            if not config.zstd_dictionary_path:
                raise ValueError("Compression enabled but no zstd dictionary configured")
            decompressor = ZstdDictionaryDecompressor.from_file(config.zstd_dictionary_path)
        self._decompressor = decompressor if config.compress else None

        self._state = ClientState.IDLE
        self._cursor: int | None = None
        self._reconnect_delay_ms = config.reconnect_delay_ms
        self._ws: Any = None
        self._task: asyncio.Task | None = None

        self._received_count = 0
        self._commit_count = 0
        self._error_count = 0
        self._reconnect_count = 0

        if len(config.wanted_dids) > MAX_WANTED_DIDS:
            logger.warning(
                "Too many wantedDids, truncating",
                extra={"requested": len(config.wanted_dids), "max": MAX_WANTED_DIDS},
            )

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def cursor(self) -> int | None:
        return self._cursor

    @property
    def reconnect_delay_ms(self) -> int:
        """Delay that will be used for the next reconnect."""
        return self._reconnect_delay_ms

    def start(self) -> None:
        """Start consuming in a background task. No-op unless IDLE."""
        if self._state != ClientState.IDLE:
            logger.warning("Jetstream client already started", extra={"state": self._state.value})
            return

        self._state = ClientState.CONNECTING
        self._task = asyncio.create_task(self._run(), name="jetstream-client")

    async def run_forever(self) -> None:
        """Wait until the client is destroyed."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def destroy(self) -> None:
        """Stop permanently, closing the socket and cancelling any pending reconnect.

        Safe to call more than once.
        """
        if self._state == ClientState.DESTROYED:
            return

        self._state = ClientState.DESTROYED
        logger.info("Destroying Jetstream client", extra={"cursor": self._cursor})

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing Jetstream connection: {e}")

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def resume_cursor(self) -> int | None:
        """Cursor value to send upstream on (re)connect."""
        if self._cursor is None:
            return None
        return max(0, self._cursor - self.config.cursor_safety_margin_us)

    def build_url(self) -> str:
        """Subscription URL with filters, compression flag and resume cursor."""
        return self._build_url(include_dids=True)

    def masked_url(self) -> str:
        """Subscription URL safe for logging: DIDs replaced by a count."""
        url = self._build_url(include_dids=False)
        did_count = min(len(self.config.wanted_dids), MAX_WANTED_DIDS)
        if did_count:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}wantedDids=[{did_count} DIDs]"
        return url

    def _build_url(self, include_dids: bool) -> str:
        parts = urlsplit(self.config.url)
        params: list[tuple[str, str]] = parse_qsl(parts.query)

        for collection in self.config.wanted_collections:
            params.append(("wantedCollections", collection))

        if include_dids:
            for did in self.config.wanted_dids[:MAX_WANTED_DIDS]:
                params.append(("wantedDids", did))

        if self.config.compress:
            params.append(("compress", "true"))

        resume = self.resume_cursor()
        if resume is not None:
            params.append(("cursor", str(resume)))

        return urlunsplit(parts._replace(query=urlencode(params)))

    async def _run(self) -> None:
        """Connect / consume / back off until destroyed."""
        while self._state != ClientState.DESTROYED:
            self._state = ClientState.CONNECTING
            logger.info("Connecting to Jetstream", extra={"url": self.masked_url()})

            try:
                async with self._connect(
                    self.build_url(), max_size=None, compression=None
                ) as ws:
                    self._ws = ws
                    self._on_open()
                    async for message in ws:
                        await self.handle_message(message)
                    logger.warning(
                        "Jetstream connection closed",
                        extra={
                            "code": getattr(ws, "close_code", None),
                            "reason": getattr(ws, "close_reason", None),
                        },
                    )
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                logger.warning(
                    "Jetstream connection closed",
                    extra={
                        "code": e.rcvd.code if e.rcvd else None,
                        "reason": e.rcvd.reason if e.rcvd else None,
                    },
                )
            except Exception as e:
                logger.error(f"Jetstream WebSocket error: {e}", extra={"error": str(e)})
            finally:
                self._ws = None

            if self._state == ClientState.DESTROYED:
                break
            await self._backoff()

    def _on_open(self) -> None:
        self._state = ClientState.CONNECTED
        self._reconnect_delay_ms = self.config.reconnect_delay_ms
        logger.info("Connected to Jetstream", extra={"cursor": self._cursor})

    async def _backoff(self) -> None:
        """Sleep for the current delay, then double it up to the ceiling."""
        delay_ms = self._reconnect_delay_ms
        self._state = ClientState.RECONNECTING
        self._reconnect_count += 1
        logger.info(
            "Scheduling reconnect",
            extra={"delay_ms": delay_ms, "cursor": self._cursor},
        )
        self._reconnect_delay_ms = min(delay_ms * 2, self.config.max_reconnect_delay_ms)
        await asyncio.sleep(delay_ms / 1000.0)

    async def handle_message(self, data: bytes | str) -> CommitEvent | None:
        """Process one inbound frame.

        This is the per-message error boundary: nothing raised while
        decoding or handling a frame escapes it.

        Returns:
            The dispatched CommitEvent, or None for non-commit or dropped frames
        """
        self._received_count += 1

        try:
            if self._decompressor is not None:
                raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
                payload: bytes | str = self._decompressor.decompress(raw)
            else:
                payload = data
            frame = parse_frame(payload)
        except StreamDecodeError as e:
            self._error_count += 1
            logger.error(
                "Failed to decompress/parse Jetstream message", extra={"error": str(e)}
            )
            return None

        self._advance_cursor(frame.get("time_us"))

        if frame.get("kind") != EventKind.COMMIT.value:
            return None

        try:
            event = CommitEvent.from_frame(frame)
        except StreamDecodeError as e:
            self._error_count += 1
            logger.error(
                "Malformed Jetstream commit",
                extra={"did": frame.get("did"), "error": str(e)},
            )
            return None

        self._commit_count += 1
        try:
            await self._handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._error_count += 1
            logger.error(
                f"Event handler error: {e}",
                exc_info=True,
                extra={"did": event.did, "uri": event.uri},
            )
        return event

    def _advance_cursor(self, time_us: Any) -> None:
        try:
            value = int(time_us)
        except (TypeError, ValueError):
            return
        if self._cursor is None or value > self._cursor:
            self._cursor = value

    @property
    def stats(self) -> dict[str, Any]:
        """Get client statistics."""
        return {
            "state": self._state.value,
            "cursor": self._cursor,
            "received_count": self._received_count,
            "commit_count": self._commit_count,
            "error_count": self._error_count,
            "reconnect_count": self._reconnect_count,
        }
