from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from turnwise.clock import SystemTimeProvider, TimeProvider
from turnwise.exceptions import ConfigurationError

if TYPE_CHECKING:
    from turnwise.models import TranscriptionItem
    from turnwise.pipeline.state_machine import ConversationStateMachine
    from turnwise.pipeline.suppression import FeedbackSuppressor

logger = logging.getLogger(__name__)

_TICK_JOB_ID = "silence-ticker"


class TurnRunner:
    """Feeds transcription items to the state machine and ticks its silence timers.

    Items go through a bounded queue that drops the oldest entry when full, so a slow
    consumer never blocks the recognizer. The ticker is a scheduler interval job.
    """

    def __init__(
        self,
        machine: ConversationStateMachine,
        suppressor: FeedbackSuppressor | None = None,
        queue_capacity: int = 64,
        tick_interval: timedelta = timedelta(milliseconds=100),
        clock: TimeProvider | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ):
        if queue_capacity <= 0:
            raise ConfigurationError(f"queue_capacity must be positive, got {queue_capacity}")
        if tick_interval <= timedelta(0):
            raise ConfigurationError(f"tick_interval must be positive, got {tick_interval}")
        self._machine = machine
        self._suppressor = suppressor
        self._queue: asyncio.Queue[TranscriptionItem] = asyncio.Queue(maxsize=queue_capacity)
        self._tick_interval = tick_interval
        self._clock = clock or SystemTimeProvider()
        self._scheduler = scheduler
        self._consumer: asyncio.Task | None = None
        self.dropped = 0

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    def submit(self, item: TranscriptionItem) -> None:
        if self._queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                oldest = self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                logger.warning("Transcription queue full, dropped #%d", oldest.sequence)
        self._queue.put_nowait(item)

    def tick(self) -> None:
        self._machine.tick(self._clock.now())

    async def start(self) -> None:
        self._consumer = asyncio.create_task(self._consume(), name="transcription-consumer")
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self._scheduler.add_job(
            self.tick,
            "interval",
            seconds=self._tick_interval.total_seconds(),
            id=_TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("Turn runner started (tick every %.0fms)", self._tick_interval.total_seconds() * 1000)

    async def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        logger.info("Turn runner stopped")

    async def join(self) -> None:
        """Wait until every submitted item has been handed to the state machine."""
        await self._queue.join()

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if self._suppressor is not None and self._suppressor.is_suppressed(item):
                    logger.debug("Suppressed #%d captured during assistant output", item.sequence)
                else:
                    self._machine.handle_transcription(item)
            except Exception:
                logger.exception("Failed to handle transcription #%d", item.sequence)
            finally:
                self._queue.task_done()
