"""
Batching queue between the entity processors and the analytics sink.

``push`` is synchronous and never waits on the sink: when the buffer reaches
``batch_size`` it is swapped for an empty one and the full batch is sent in a
background task. ``drain`` waits for every background flush, then sends
whatever is left as one final batch. Each pushed event ends up in exactly one
batch.

Background batches complete independently and may reach the sink out of
order relative to each other.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol, Sequence

from config import settings
from connectors.models import NormalizedEvent

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    async def send(self, batch: Sequence[NormalizedEvent]) -> None: ...


class EventBatchQueue:
    """Accumulates normalized events and flushes them to the sink in batches."""

    def __init__(
        self,
        sink: EventSink,
        batch_size: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self._sink = sink
        self.batch_size: int = batch_size or settings.SYNC_EVENT_BATCH_SIZE
        self._context: dict[str, Any] = context or {}
        self._buffer: list[NormalizedEvent] = []
        self._pending: set[asyncio.Task[None]] = set()
        self.pushed_count: int = 0
        self.flushed_batches: int = 0

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def pending_flushes(self) -> int:
        return len(self._pending)

    def push(self, event: NormalizedEvent) -> None:
        """Queue an event; must be called from within the running event loop."""
        self._buffer.append(event)
        self.pushed_count += 1

        if len(self._buffer) >= self.batch_size:
            batch, self._buffer = self._buffer, []
            task = asyncio.get_running_loop().create_task(self._flush_in_background(batch))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _flush_in_background(self, batch: list[NormalizedEvent]) -> None:
        logger.info(
            "Inserting actions to sink",
            extra={**self._context, "count": len(batch)},
        )
        try:
            await self._sink.send(batch)
            self.flushed_batches += 1
        except Exception:
            logger.exception(
                "Background flush to sink failed",
                extra={**self._context, "count": len(batch)},
            )

    async def drain(self) -> int:
        """
        Wait for in-flight flushes, then flush the remainder.

        Returns:
            Number of events sent in the final batch
        """
        while self._pending:
            tasks = list(self._pending)
            self._pending.clear()
            await asyncio.gather(*tasks)

        if not self._buffer:
            return 0

        batch, self._buffer = self._buffer, []
        logger.info(
            "Draining remaining actions to sink",
            extra={**self._context, "count": len(batch)},
        )
        await self._sink.send(batch)
        self.flushed_batches += 1
        return len(batch)
