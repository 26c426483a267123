#!/usr/bin/env python3
"""
Background import queue for feeds added in bulk (OPML).

The queue is an explicit object owned by the dashboard. It processes one
feed at a time, sleeping between feeds so the event loop stays responsive,
and asks its owner to persist progress every few feeds instead of after each
one. stop() prevents further feeds from starting; a fetch already in flight
is allowed to finish.
"""

import asyncio
import inspect
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional

from aiohttp import ClientError

from config import config, get_logger
from errors import FeedError
from models import FeedMetadata, ImportStatus

logger = get_logger("importer")

ProcessFn = Callable[[FeedMetadata], Awaitable[None]]
CheckpointFn = Callable[[], object]


class ImportQueue:
    """Sequential queue of FeedMetadata with pending/processing/completed/failed states."""

    def __init__(
        self,
        process: ProcessFn,
        on_checkpoint: Optional[CheckpointFn] = None,
        delay_seconds: Optional[float] = None,
        checkpoint_every: Optional[int] = None,
    ) -> None:
        self.process = process
        self.on_checkpoint = on_checkpoint
        self.delay_seconds = config.IMPORT_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.checkpoint_every = checkpoint_every or config.IMPORT_CHECKPOINT_EVERY
        self._pending: Deque[FeedMetadata] = deque()
        self.finished: List[FeedMetadata] = []
        self.running = False
        self._stopped = False

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> List[FeedMetadata]:
        return list(self._pending)

    def enqueue(self, *items: FeedMetadata) -> None:
        for metadata in items:
            if any(m.url == metadata.url for m in self._pending):
                continue
            metadata.import_status = ImportStatus.PENDING
            metadata.import_error = None
            self._pending.append(metadata)
        self._stopped = False

    def stop(self) -> None:
        """Stop scheduling further feeds. The current one runs to completion."""
        if self.running:
            logger.info(f"Import queue stopping with {len(self._pending)} feed(s) left")
        self._stopped = True

    async def _checkpoint(self) -> None:
        if self.on_checkpoint is None:
            return
        result = self.on_checkpoint()
        if inspect.isawaitable(result):
            await result

    async def drain(self) -> int:
        """Process queued feeds one by one. Returns how many were processed."""
        if self.running or not self._pending:
            return 0
        self.running = True
        processed = 0
        total = len(self._pending)
        logger.info(f"📥 Importing {total} feed(s) in the background")
        try:
            while self._pending and not self._stopped:
                metadata = self._pending.popleft()
                metadata.import_status = ImportStatus.PROCESSING
                logger.info(f"Importing {metadata.title} ({processed + 1}/{total})")
                try:
                    await self.process(metadata)
                    metadata.import_status = ImportStatus.COMPLETED
                except (FeedError, ClientError, asyncio.TimeoutError, OSError, ValueError, ArithmeticError) as e:
                    metadata.import_status = ImportStatus.FAILED
                    metadata.import_error = str(e) or e.__class__.__name__
                    logger.warning(f"Import of {metadata.url} failed: {metadata.import_error}")
                processed += 1
                self.finished.append(metadata)

                if processed % self.checkpoint_every == 0:
                    await self._checkpoint()
                if self._pending and not self._stopped:
                    await asyncio.sleep(self.delay_seconds)
            await self._checkpoint()
        finally:
            self.running = False

        failed = sum(1 for m in self.finished[-processed:] if m.import_status == ImportStatus.FAILED) if processed else 0
        logger.info(f"✅ Background import processed {processed} feed(s), {failed} failed")
        return processed
