"""
jjalcloud indexer - Main entry point.

This module starts the indexer with all components:
- Durable store (local SQLite or remote D1)
- Record writer (immediate or batched)
- Jetstream client feeding the commit handler
- Optional startup backfill

Usage:
    python -m indexer.jjalcloud_indexer.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is initialized before the stream is opened
    - Shutdown stops the stream first, then drains the writer, then closes
      the store, so no write is issued against a closed store

How to change safely:
    - Keep the shutdown order above when adding components
    - Startup backfill runs concurrently with live ingestion; both write
      idempotently by natural key
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .config import IndexerConfig
from .ingest import Backfiller, CommitHandler, RecordWriter, RepoClient, create_writer
from .store import DurableStore, create_store
from .stream import JetstreamClient

logger = logging.getLogger(__name__)


def setup_logging(config: IndexerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Indexer configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class Indexer:
    """jjalcloud indexer orchestrator.

    Attributes:
        config: Indexer configuration
        store: Durable store
        writer: Live write strategy
        handler: Commit handler
        client: Jetstream client

    Example:
        >>> indexer = Indexer()
        >>> await indexer.start()
        >>> # Indexer is running
        >>> await indexer.stop()
    """

    def __init__(self, config: IndexerConfig | None = None) -> None:
        self.config = config or IndexerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: DurableStore | None = None
        self.writer: RecordWriter | None = None
        self.handler: CommitHandler | None = None
        self.client: JetstreamClient | None = None

        # Background tasks
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the indexer and block until shutdown is requested."""
        if self._running:
            logger.warning("Indexer already running")
            return

        logger.info("Starting jjalcloud indexer")
        self.config.log_config()

        try:
            self.store = create_store(self.config)
            await self.store.initialize()

            self.writer = create_writer(self.store, self.config.batch)
            await self.writer.start()

            self.handler = CommitHandler(self.writer, self.config.jetstream.wanted_collections)
            self.client = JetstreamClient(self.config.jetstream, self.handler)
            self.client.start()

            if self.config.backfill.run_on_start:
                self._tasks.append(
                    asyncio.create_task(self._run_backfill(), name="startup-backfill")
                )

            self._running = True
            logger.info("jjalcloud indexer started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Indexer startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    async def _run_backfill(self) -> None:
        assert self.store is not None
        try:
            async with RepoClient(
                self.config.backfill.pds_url,
                timeout_seconds=self.config.backfill.timeout_seconds,
            ) as repo_client:
                backfiller = Backfiller(
                    self.store, repo_client, page_limit=self.config.backfill.page_limit
                )
                await backfiller.run()
        except asyncio.CancelledError:
            logger.info("Startup backfill cancelled")
            raise
        except Exception as e:
            logger.error(f"Startup backfill failed: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop the indexer gracefully."""
        if not self._running:
            return

        logger.info("Stopping jjalcloud indexer")

        if self.client:
            await self.client.destroy()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.writer:
            await self.writer.stop()

        if self.store:
            await self.store.close()

        self._running = False
        logger.info(
            "jjalcloud indexer stopped",
            extra={"cursor": self.client.cursor if self.client else None},
        )

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = IndexerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    indexer = Indexer(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        indexer.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(indexer.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(indexer.stop())
        loop.close()


if __name__ == "__main__":
    main()
