from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from turnwise.exceptions import ConfigurationError
from turnwise.models import ConversationMode, TranscriptionItem
from turnwise.pipeline.state_machine import ConversationObserver, StateChange

logger = logging.getLogger(__name__)

_BUSY_MODES = (ConversationMode.PROCESSING, ConversationMode.SPEAKING)


class FeedbackSuppressor(ConversationObserver):
    """Tracks when the assistant is busy so echo of its own output can be discarded.

    Items are judged by their capture timestamp, not their arrival time: audio recorded
    while the assistant was speaking may be transcribed only after the machine is back
    in Listening. A short tail after the busy window also covers trailing playback.
    """

    def __init__(self, tail: timedelta = timedelta(milliseconds=300)):
        if tail < timedelta(0):
            raise ConfigurationError(f"tail must not be negative, got {tail}")
        self._tail = tail
        self._lock = threading.Lock()
        self._busy_since: datetime | None = None
        self._last_window: tuple[datetime, datetime] | None = None

    def state_changed(self, change: StateChange) -> None:
        with self._lock:
            if change.to_mode in _BUSY_MODES:
                if self._busy_since is None:
                    self._busy_since = change.timestamp_utc
            elif change.from_mode in _BUSY_MODES and self._busy_since is not None:
                self._last_window = (self._busy_since, change.timestamp_utc)
                self._busy_since = None

    def is_suppressed(self, item: TranscriptionItem) -> bool:
        ts = item.timestamp_utc
        with self._lock:
            if self._busy_since is not None:
                return ts >= self._busy_since
            if self._last_window is not None:
                start, end = self._last_window
                return start <= ts <= end + self._tail
            return False
