from datetime import timedelta

import pytest

from tests.conftest import T0
from turnwise.exceptions import ConfigurationError
from turnwise.models import ConversationMode, TranscriptionItem
from turnwise.pipeline.state_machine import StateChange
from turnwise.pipeline.suppression import FeedbackSuppressor


def _change(from_mode, to_mode, seconds):
    return StateChange(from_mode, to_mode, "test", T0 + timedelta(seconds=seconds))


def _item(seconds):
    return TranscriptionItem.from_text(1, T0 + timedelta(seconds=seconds), "hello there")


def test_nothing_suppressed_before_any_output():
    assert FeedbackSuppressor().is_suppressed(_item(0)) is False


def test_items_captured_while_busy_are_suppressed():
    s = FeedbackSuppressor()
    s.state_changed(_change(ConversationMode.LISTENING, ConversationMode.PROCESSING, 10))

    assert s.is_suppressed(_item(11))
    assert not s.is_suppressed(_item(9))


def test_window_spans_processing_and_speaking_plus_tail():
    s = FeedbackSuppressor(tail=timedelta(milliseconds=300))
    s.state_changed(_change(ConversationMode.LISTENING, ConversationMode.PROCESSING, 10))
    s.state_changed(_change(ConversationMode.PROCESSING, ConversationMode.SPEAKING, 12))
    s.state_changed(_change(ConversationMode.SPEAKING, ConversationMode.LISTENING, 15))

    assert s.is_suppressed(_item(10.5))
    assert s.is_suppressed(_item(15.2))
    assert not s.is_suppressed(_item(15.4))
    assert not s.is_suppressed(_item(9.9))


def test_listening_transitions_do_not_open_a_window():
    s = FeedbackSuppressor()
    s.state_changed(_change(ConversationMode.QUIESCENT, ConversationMode.LISTENING, 1))
    s.state_changed(_change(ConversationMode.LISTENING, ConversationMode.QUIESCENT, 9))
    assert not s.is_suppressed(_item(5))


def test_tracks_real_machine(machine, clock):
    s = FeedbackSuppressor(tail=timedelta(0))
    machine.subscribe(s)

    machine.handle_text(clock.now(), "elara hi", True)
    clock.advance(seconds=2)
    machine.tick(clock.now())
    busy_from = clock.now()
    clock.advance(seconds=1)
    machine.end_processing()

    assert s.is_suppressed(TranscriptionItem.from_text(2, busy_from + timedelta(seconds=0.5), "echo"))
    assert not s.is_suppressed(TranscriptionItem.from_text(3, clock.now() + timedelta(seconds=1), "new"))


def test_negative_tail_rejected():
    with pytest.raises(ConfigurationError):
        FeedbackSuppressor(tail=timedelta(milliseconds=-1))
