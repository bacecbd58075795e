"""ConversationStateMachine: turns a stream of transcription items into discrete prompts.

Modes:
    QUIESCENT  --wake word-->                           LISTENING
    LISTENING  --processing_silence, buffer non-empty--> PROCESSING  (emits prompt_ready)
    LISTENING  --end_silence since listening began-->   QUIESCENT
    PROCESSING --end_processing()-->                    LISTENING
    any        --begin_speaking()-->                    SPEAKING
    SPEAKING   --end_speaking()-->                      LISTENING

Transcriptions arriving while PROCESSING or SPEAKING are dropped, which keeps the
assistant from hearing its own synthesized voice.

All state lives behind one lock shared by handle_transcription() and tick(). Observer
notifications are collected while the lock is held and delivered on the calling thread
right after it is released, so an observer may call back into the machine.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from turnwise.clock import SystemTimeProvider, TimeProvider
from turnwise.exceptions import ConfigurationError
from turnwise.models import ConversationMode, TranscriptionItem, count_words

_module_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateChange:
    from_mode: ConversationMode
    to_mode: ConversationMode
    reason: str
    timestamp_utc: datetime


class ConversationObserver:
    """Receives state machine notifications. Both hooks default to no-ops."""

    def prompt_ready(self, text: str) -> None:
        pass

    def state_changed(self, change: StateChange) -> None:
        pass


class ConversationStateMachine:
    def __init__(
        self,
        wake_word: str,
        processing_silence: timedelta,
        end_silence: timedelta,
        logger: logging.Logger | None = None,
        clock: TimeProvider | None = None,
    ):
        if not wake_word or not wake_word.strip():
            raise ConfigurationError("wake word must not be empty")
        if processing_silence <= timedelta(0):
            raise ConfigurationError(f"processing_silence must be positive, got {processing_silence}")
        if end_silence <= timedelta(0):
            raise ConfigurationError(f"end_silence must be positive, got {end_silence}")

        self.wake_word = wake_word.strip()
        self.processing_silence = processing_silence
        self.end_silence = end_silence
        self._wake_lower = self.wake_word.lower()
        self._log = logger or _module_logger
        self._clock = clock or SystemTimeProvider()

        self._lock = threading.Lock()
        self._observers: list[ConversationObserver] = []
        self._pending: list[StateChange | str] = []

        self._mode = ConversationMode.QUIESCENT
        self._mode_entered_at = self._clock.now()
        self._listening_since: datetime | None = None
        self._last_heard_at: datetime | None = None
        self._buffer: list[TranscriptionItem] = []
        # Edge guard: Processing is considered once per buffer state, until new speech arrives
        self._processing_considered = False

        self._log.info(
            "State machine ready (wake_word=%r, processing_silence=%.2fs, end_silence=%.2fs)",
            self.wake_word,
            processing_silence.total_seconds(),
            end_silence.total_seconds(),
        )

    # --- Observers ---

    def subscribe(self, observer: ConversationObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: ConversationObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    # --- Read-only views ---

    @property
    def mode(self) -> ConversationMode:
        with self._lock:
            return self._mode

    @property
    def is_speaking(self) -> bool:
        return self.mode is ConversationMode.SPEAKING

    @property
    def mode_entered_at(self) -> datetime:
        with self._lock:
            return self._mode_entered_at

    @property
    def listening_since(self) -> datetime | None:
        with self._lock:
            return self._listening_since

    @property
    def last_heard_at(self) -> datetime | None:
        with self._lock:
            return self._last_heard_at

    @property
    def buffered_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    # --- Inputs ---

    def tick(self, now: datetime) -> None:
        """Advance silence timers when no transcription arrives. Safe from a background job."""
        with self._lock:
            if self._mode is not ConversationMode.LISTENING:
                return
            self._evaluate_silence(now)
            pending, observers = self._take_pending()
        self._notify(pending, observers)

    def handle_text(
        self,
        timestamp_utc: datetime,
        text: str | None,
        meaningful: bool,
        sequence: int = 0,
    ) -> None:
        text = text or ""
        self.handle_transcription(
            TranscriptionItem(
                sequence=sequence,
                timestamp_utc=timestamp_utc,
                text=text,
                is_meaningful=meaningful,
                word_count=count_words(text),
            )
        )

    def handle_transcription(self, item: TranscriptionItem) -> None:
        text = item.text or ""
        meaningful = item.is_meaningful and bool(text.strip())

        with self._lock:
            if self._mode is ConversationMode.QUIESCENT:
                if self._wake_lower in text.lower():
                    # Anchor to now so silence is never measured retroactively
                    now = self._clock.now()
                    self._to_listening(now, f"wake word '{self.wake_word}' detected")
                    if meaningful and self._has_content_beyond_wake_word(text):
                        # Keep the wake word in the buffered text; the model copes with it
                        self._last_heard_at = now
                        self._buffer.append(
                            TranscriptionItem(
                                sequence=item.sequence,
                                timestamp_utc=now,
                                text=text,
                                is_meaningful=True,
                                word_count=item.word_count or count_words(text),
                            )
                        )
                        self._processing_considered = False

            elif self._mode is ConversationMode.LISTENING:
                if meaningful:
                    # Wall-clock anchor; the buffered item keeps its own timestamp
                    now = self._clock.now()
                    self._last_heard_at = now
                    if not self._buffer:
                        # Measure processing silence from actual speech, not from the wake word
                        self._listening_since = now
                    self._buffer.append(item)
                    self._processing_considered = False
                self._evaluate_silence(self._clock.now())

            else:
                self._log.debug("Dropped #%d while %s", item.sequence, self._mode)

            pending, observers = self._take_pending()
        self._notify(pending, observers)

    # --- Host-driven transitions ---

    def begin_speaking(self) -> None:
        """Call immediately before audio output starts. Clears any residual buffer."""
        with self._lock:
            if self._mode is not ConversationMode.SPEAKING:
                now = self._clock.now()
                self._buffer.clear()
                self._listening_since = None
                self._last_heard_at = None
                self._set_mode(ConversationMode.SPEAKING, "begin speaking", now)
            pending, observers = self._take_pending()
        self._notify(pending, observers)

    def end_speaking(self) -> None:
        with self._lock:
            if self._mode is ConversationMode.SPEAKING:
                self._to_listening(self._clock.now(), "speech completed")
            pending, observers = self._take_pending()
        self._notify(pending, observers)

    def end_processing(self) -> None:
        """Return to Listening after the model exchange (no TTS, or after an error)."""
        with self._lock:
            if self._mode is ConversationMode.PROCESSING:
                self._to_listening(self._clock.now(), "processing completed")
            pending, observers = self._take_pending()
        self._notify(pending, observers)

    # --- Internals (caller holds the lock) ---

    def _has_content_beyond_wake_word(self, text: str) -> bool:
        lower = text.lower()
        idx = lower.find(self._wake_lower)
        rest = lower[:idx] + lower[idx + len(self._wake_lower):]
        return any(ch.isalnum() for ch in rest)

    def _evaluate_silence(self, now: datetime) -> None:
        if self._mode is not ConversationMode.LISTENING:
            return

        since_last_heard = now - (self._last_heard_at or self._listening_since or now)
        since_listening = now - (self._listening_since or now)

        if not self._processing_considered and since_last_heard >= self.processing_silence:
            self._processing_considered = True
            if self._buffer:
                self._to_processing(now, f"silence {since_last_heard.total_seconds():.1f}s")
                return
            # Anchors stay put so end_silence keeps accruing
            self._log.debug("Skip processing: empty buffer")

        if since_listening >= self.end_silence:
            self._to_quiescent(now, f"extended silence {since_listening.total_seconds():.1f}s")

    def _to_listening(self, now: datetime, reason: str) -> None:
        self._buffer.clear()
        self._listening_since = now
        self._last_heard_at = None
        self._processing_considered = False
        self._set_mode(ConversationMode.LISTENING, reason, now)

    def _to_quiescent(self, now: datetime, reason: str) -> None:
        self._buffer.clear()
        self._listening_since = None
        self._last_heard_at = None
        self._set_mode(ConversationMode.QUIESCENT, reason, now)

    def _to_processing(self, now: datetime, reason: str) -> None:
        joined = " ".join(item.text for item in self._buffer)
        self._buffer.clear()
        self._set_mode(ConversationMode.PROCESSING, reason, now)
        self._pending.append(joined)

    def _set_mode(self, mode: ConversationMode, reason: str, now: datetime) -> None:
        previous = self._mode
        self._mode = mode
        self._mode_entered_at = now
        self._log.info("%s -> %s (%s)", previous, mode, reason)
        self._pending.append(StateChange(previous, mode, reason, now))

    def _take_pending(self) -> tuple[list[StateChange | str], tuple[ConversationObserver, ...]]:
        pending, self._pending = self._pending, []
        return pending, tuple(self._observers)

    def _notify(
        self,
        pending: list[StateChange | str],
        observers: tuple[ConversationObserver, ...],
    ) -> None:
        for event in pending:
            for observer in observers:
                try:
                    if isinstance(event, StateChange):
                        observer.state_changed(event)
                    else:
                        observer.prompt_ready(event)
                except Exception:
                    self._log.warning(
                        "Observer %s failed handling %s",
                        type(observer).__name__,
                        type(event).__name__,
                        exc_info=True,
                    )
