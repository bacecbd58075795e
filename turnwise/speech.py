from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class TextToSpeech(Protocol):
    async def speak(self, text: str) -> None: ...


class NoOpTextToSpeech:
    """Stands in when no speech engine is configured; the reply is only logged."""

    async def speak(self, text: str) -> None:
        logger.info("TTS disabled, not speaking %d chars", len(text))
