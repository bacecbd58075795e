from datetime import timedelta

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Conversation state machine
    wake_word: str = "elara"
    processing_silence_seconds: float = 1.2
    end_silence_seconds: float = 8.0
    ticker_interval_ms: int = 100

    # Transcription feed
    transcription_queue_capacity: int = 64
    suppress_tail_ms: int = 300  # drop echo captured just after speaking ends
    min_words: int = 1

    # Conversation store & context
    conversation_dir: str = "data/conversation"
    encryption_key: str = ""  # empty disables encryption
    context_last_n: int = 6

    # Ollama
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "qwen3:8b"
    system_prompt: str = (
        "You are a helpful voice assistant. "
        "Answer briefly and conversationally; your reply will be read aloud."
    )
    output_filters: str = ""  # comma-separated strings removed from replies

    # Audio (Whisper)
    whisper_model: str = "base"
    whisper_device: str = "cpu"
    whisper_compute_type: str = "int8"

    # Speech output
    tts_enabled: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = True
    log_file: str = "data/turnwise.log"

    @field_validator("wake_word")
    @classmethod
    def wake_word_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("wake_word must not be blank")
        return v.strip()

    @field_validator("processing_silence_seconds", "end_silence_seconds")
    @classmethod
    def positive_duration(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("silence durations must be positive")
        return v

    @field_validator(
        "ticker_interval_ms", "transcription_queue_capacity", "context_last_n", "min_words"
    )
    @classmethod
    def positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("suppress_tail_ms")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("suppress_tail_ms must not be negative")
        return v

    @property
    def output_filter_list(self) -> list[str]:
        return [f.strip() for f in self.output_filters.split(",") if f.strip()]

    @property
    def processing_silence(self) -> timedelta:
        return timedelta(seconds=self.processing_silence_seconds)

    @property
    def end_silence(self) -> timedelta:
        return timedelta(seconds=self.end_silence_seconds)

    @property
    def ticker_interval(self) -> timedelta:
        return timedelta(milliseconds=self.ticker_interval_ms)

    @property
    def suppress_tail(self) -> timedelta:
        return timedelta(milliseconds=self.suppress_tail_ms)

    model_config = {"env_file": ".env"}
