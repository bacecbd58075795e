from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from turnwise.config import Settings
from turnwise.context.store import FileConversationStore
from turnwise.llm.client import OllamaClient
from turnwise.main import app
from turnwise.models import TranscriptionItem
from turnwise.pipeline.runner import TurnRunner
from turnwise.pipeline.state_machine import (
    ConversationObserver,
    ConversationStateMachine,
    StateChange,
)

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

TEST_SETTINGS = Settings(
    _env_file=None,
    wake_word="elara",
    processing_silence_seconds=1.2,
    end_silence_seconds=8.0,
    ollama_base_url="http://localhost:11434",
    ollama_model="test-model",
    log_json=False,
)


class ManualClock:
    def __init__(self, start: datetime = T0):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now


class RecordingObserver(ConversationObserver):
    def __init__(self):
        self.prompts: list[str] = []
        self.changes: list[StateChange] = []

    def prompt_ready(self, text: str) -> None:
        self.prompts.append(text)

    def state_changed(self, change: StateChange) -> None:
        self.changes.append(change)

    @property
    def modes(self) -> list[str]:
        return [c.to_mode for c in self.changes]


@pytest.fixture
def settings() -> Settings:
    return TEST_SETTINGS


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def machine(clock, observer) -> ConversationStateMachine:
    m = ConversationStateMachine(
        wake_word="elara",
        processing_silence=timedelta(seconds=1.2),
        end_silence=timedelta(seconds=8),
        clock=clock,
    )
    m.subscribe(observer)
    return m


@pytest.fixture
def store(tmp_path, clock) -> FileConversationStore:
    return FileConversationStore(tmp_path / "conversation", clock=clock)


# --- Sync fixture for TestClient-based integration tests ---


@pytest.fixture
def client(settings: Settings, tmp_path) -> TestClient:
    mock_response = MagicMock()
    mock_response.raise_for_status = MagicMock()
    mock_response.json.return_value = {
        "message": {"role": "assistant", "content": "Mock reply"}
    }

    mock_http = AsyncMock()
    mock_http.post = AsyncMock(return_value=mock_response)
    mock_http.get = AsyncMock()

    machine = ConversationStateMachine(
        wake_word=settings.wake_word,
        processing_silence=settings.processing_silence,
        end_silence=settings.end_silence,
    )

    app.state.settings = settings
    app.state.http_client = mock_http
    app.state.store = FileConversationStore(tmp_path / "conversation")
    app.state.ollama_client = OllamaClient(
        http_client=mock_http,
        base_url=settings.ollama_base_url,
        model=settings.ollama_model,
    )
    app.state.state_machine = machine
    app.state.runner = TurnRunner(machine, queue_capacity=settings.transcription_queue_capacity)

    mock_transcriber = MagicMock()
    mock_transcriber.to_item = AsyncMock(
        side_effect=lambda chunk: TranscriptionItem.from_text(
            chunk.sequence, chunk.timestamp_utc, "Transcribed text"
        )
    )
    app.state.transcriber = mock_transcriber

    # Not used as a context manager, so the lifespan (and Whisper/Ollama) never starts
    yield TestClient(app, raise_server_exceptions=False)
