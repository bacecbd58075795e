import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime

os.environ.setdefault("HF_HUB_DISABLE_TELEMETRY", "1")

from faster_whisper import WhisperModel

from turnwise.models import TranscriptionItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioChunk:
    """One captured audio segment, as handed over by the (external) recorder."""

    sequence: int
    timestamp_utc: datetime
    audio: bytes
    suffix: str = ".wav"


class Transcriber:
    def __init__(
        self,
        model_size: str = "base",
        device: str = "cpu",
        compute_type: str = "int8",
        min_words: int = 1,
    ):
        logger.info(
            "Loading Whisper model: %s (device=%s, compute=%s)", model_size, device, compute_type
        )
        self._model = WhisperModel(model_size, device=device, compute_type=compute_type)
        self._min_words = min_words

    def transcribe(self, audio_bytes: bytes, suffix: str = ".wav") -> str:
        """Transcribe audio bytes to text (synchronous)."""
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=True) as f:
            f.write(audio_bytes)
            f.flush()
            segments, _info = self._model.transcribe(f.name)
            result = " ".join(seg.text.strip() for seg in segments)
            logger.debug("Audio (Whisper) RAW INTERPRETATION: %r", result)
            return result

    async def transcribe_async(self, audio_bytes: bytes, suffix: str = ".wav") -> str:
        """Transcribe audio bytes to text without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.transcribe, audio_bytes, suffix)

    async def to_item(self, chunk: AudioChunk) -> TranscriptionItem:
        """Transcribe a chunk and classify it for the conversation state machine."""
        text = await self.transcribe_async(chunk.audio, chunk.suffix)
        item = TranscriptionItem.from_text(
            chunk.sequence, chunk.timestamp_utc, text, min_words=self._min_words
        )
        if item.is_meaningful:
            logger.info("#%d (%d words): %s", chunk.sequence, item.word_count, text)
        return item
