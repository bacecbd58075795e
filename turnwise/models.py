from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

# Numeric role values written by older records
_LEGACY_ROLE_CODES = {0: "user", 1: "assistant", 2: "system"}


def as_utc(value: datetime) -> datetime:
    """Offset-less values are taken as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ChatRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMode(StrEnum):
    QUIESCENT = "quiescent"  # idle, waiting for the wake word
    LISTENING = "listening"  # buffering an utterance
    PROCESSING = "processing"  # prompt emitted, host is querying the model
    SPEAKING = "speaking"  # host is playing synthesized audio


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str
    timestamp_utc: datetime
    metadata: Mapping[str, str] | None = None

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v: object) -> object:
        if isinstance(v, bool):
            return v
        if isinstance(v, int):
            return _LEGACY_ROLE_CODES.get(v, v)
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("timestamp_utc")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("metadata")
    @classmethod
    def freeze_metadata(cls, v: Mapping[str, str] | None) -> Mapping[str, str] | None:
        return None if v is None else MappingProxyType(dict(v))

    @field_serializer("metadata")
    def dump_metadata(self, v: Mapping[str, str] | None) -> dict[str, str] | None:
        return None if v is None else dict(v)


def count_words(text: str | None) -> int:
    return len(text.split()) if text else 0


@dataclass(frozen=True)
class TranscriptionItem:
    """A single recognized segment from the audio pipeline."""

    sequence: int
    timestamp_utc: datetime
    text: str = ""
    is_meaningful: bool = False
    word_count: int = 0

    def __post_init__(self) -> None:
        # Suppression and silence timing compare against aware UTC instants
        object.__setattr__(self, "timestamp_utc", as_utc(self.timestamp_utc))

    @classmethod
    def from_text(
        cls,
        sequence: int,
        timestamp_utc: datetime,
        text: str | None,
        min_words: int = 1,
    ) -> TranscriptionItem:
        """Classify raw recognizer output: meaningful means non-blank with >= min_words words."""
        text = text or ""
        words = count_words(text)
        return cls(
            sequence=sequence,
            timestamp_utc=timestamp_utc,
            text=text,
            is_meaningful=bool(text.strip()) and words >= min_words,
            word_count=words,
        )


class Prompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    system: str
    context: tuple[ChatMessage, ...] = ()
    user_input: str
    now_utc: datetime
    hints: dict[str, str] | None = None


# --- Service surface ---


class TranscriptionIn(BaseModel):
    sequence: int
    text: str = ""
    timestamp_utc: datetime | None = None
    is_meaningful: bool | None = None

    @field_validator("timestamp_utc")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else as_utc(v)


class AcceptedResponse(BaseModel):
    accepted: bool
    sequence: int
    is_meaningful: bool


class OllamaCheck(BaseModel):
    available: bool


class HealthResponse(BaseModel):
    status: str
    mode: ConversationMode
    checks: OllamaCheck


class StateResponse(BaseModel):
    mode: ConversationMode
    mode_entered_at: datetime
    buffered_items: int
