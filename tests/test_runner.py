import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from turnwise.exceptions import ConfigurationError
from turnwise.models import ConversationMode, TranscriptionItem
from turnwise.pipeline.runner import TurnRunner
from turnwise.pipeline.suppression import FeedbackSuppressor


def _item(clock, seq, text):
    return TranscriptionItem.from_text(seq, clock.now(), text)


def test_submit_drops_oldest_when_full(machine, clock):
    runner = TurnRunner(machine, queue_capacity=2, clock=clock)
    for i in range(3):
        runner.submit(_item(clock, i, f"item {i}"))

    assert runner.dropped == 1
    assert runner.queued == 2
    assert runner._queue.get_nowait().sequence == 1


def test_tick_uses_clock(machine, clock):
    runner = TurnRunner(machine, clock=clock)
    machine.handle_text(clock.now(), "elara", True)

    clock.advance(seconds=8)
    runner.tick()
    assert machine.mode == ConversationMode.QUIESCENT


async def test_consumer_feeds_state_machine(machine, clock):
    scheduler = MagicMock()
    runner = TurnRunner(machine, clock=clock, scheduler=scheduler)
    await runner.start()
    try:
        runner.submit(_item(clock, 1, "elara turn on the lights"))
        await runner.join()
        assert machine.mode == ConversationMode.LISTENING
        assert machine.buffered_count == 1
    finally:
        await runner.stop()

    scheduler.add_job.assert_called_once()
    assert scheduler.add_job.call_args.kwargs["id"] == "silence-ticker"
    scheduler.shutdown.assert_called_once_with(wait=False)


async def test_suppressed_items_never_reach_machine(machine, clock):
    suppressor = MagicMock()
    suppressor.is_suppressed.return_value = True
    runner = TurnRunner(machine, suppressor=suppressor, clock=clock, scheduler=MagicMock())
    await runner.start()
    try:
        runner.submit(_item(clock, 1, "elara hello"))
        await runner.join()
    finally:
        await runner.stop()

    assert machine.mode == ConversationMode.QUIESCENT


async def test_consumer_survives_handler_errors(clock):
    machine = MagicMock()
    machine.handle_transcription.side_effect = [RuntimeError("boom"), None]
    runner = TurnRunner(machine, clock=clock, scheduler=MagicMock())
    await runner.start()
    try:
        runner.submit(_item(clock, 1, "first"))
        runner.submit(_item(clock, 2, "second"))
        await runner.join()
    finally:
        await runner.stop()

    assert machine.handle_transcription.call_count == 2


async def test_scheduler_ticks_machine(machine, clock):
    runner = TurnRunner(machine, tick_interval=timedelta(milliseconds=10), clock=clock)
    machine.handle_text(clock.now(), "elara", True)
    clock.advance(seconds=9)

    await runner.start()
    try:
        for _ in range(100):
            if machine.mode == ConversationMode.QUIESCENT:
                break
            await asyncio.sleep(0.02)
    finally:
        await runner.stop()

    assert machine.mode == ConversationMode.QUIESCENT


@pytest.mark.parametrize(
    "kwargs",
    [{"queue_capacity": 0}, {"tick_interval": timedelta(0)}],
)
def test_invalid_configuration(machine, kwargs):
    with pytest.raises(ConfigurationError):
        TurnRunner(machine, **kwargs)


async def test_offset_less_timestamp_still_heard_after_a_turn(machine, clock):
    suppressor = FeedbackSuppressor()
    machine.subscribe(suppressor)
    runner = TurnRunner(machine, suppressor=suppressor, clock=clock, scheduler=MagicMock())
    await runner.start()
    try:
        machine.handle_text(clock.now(), "elara hi", True)
        clock.advance(seconds=2)
        machine.tick(clock.now())
        clock.advance(seconds=1)
        machine.end_processing()

        runner.submit(TranscriptionItem.from_text(5, datetime(2026, 3, 1, 12, 0, 5), "what time is it"))
        await runner.join()
    finally:
        await runner.stop()

    assert machine.mode == ConversationMode.LISTENING
    assert machine.buffered_count == 1


def test_transcription_item_timestamps_are_utc():
    naive = TranscriptionItem.from_text(1, datetime(2026, 3, 1, 12, 0, 5), "hello")
    assert naive.timestamp_utc == datetime(2026, 3, 1, 12, 0, 5, tzinfo=UTC)
    assert naive.timestamp_utc.tzinfo is UTC
