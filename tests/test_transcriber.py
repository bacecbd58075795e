from unittest.mock import MagicMock, patch

import pytest

from tests.conftest import T0
from turnwise.audio.transcriber import AudioChunk, Transcriber


def _model_returning(*texts):
    mock_model = MagicMock()
    segments = []
    for text in texts:
        seg = MagicMock()
        seg.text = text
        segments.append(seg)
    mock_model.transcribe.return_value = (segments, MagicMock())
    return mock_model


@pytest.fixture
def mock_transcriber():
    with patch("turnwise.audio.transcriber.WhisperModel") as mock_cls:
        mock_cls.return_value = _model_returning(" Hello world ")
        yield Transcriber(model_size="base", device="cpu", compute_type="int8")


def test_transcribe_sync(mock_transcriber):
    assert mock_transcriber.transcribe(b"fake-audio-data") == "Hello world"


async def test_transcribe_async(mock_transcriber):
    assert await mock_transcriber.transcribe_async(b"fake-audio-data") == "Hello world"


def test_transcribe_multiple_segments():
    with patch("turnwise.audio.transcriber.WhisperModel") as mock_cls:
        mock_cls.return_value = _model_returning(" Hello ", " world ")
        t = Transcriber(model_size="base")
        assert t.transcribe(b"fake-audio") == "Hello world"


async def test_to_item_classifies_speech(mock_transcriber):
    item = await mock_transcriber.to_item(AudioChunk(sequence=4, timestamp_utc=T0, audio=b"x"))
    assert item.sequence == 4
    assert item.timestamp_utc == T0
    assert item.text == "Hello world"
    assert item.is_meaningful
    assert item.word_count == 2


async def test_to_item_silence_is_not_meaningful():
    with patch("turnwise.audio.transcriber.WhisperModel") as mock_cls:
        mock_cls.return_value = _model_returning()
        t = Transcriber(min_words=2)
        item = await t.to_item(AudioChunk(sequence=1, timestamp_utc=T0, audio=b"x"))
    assert item.text == ""
    assert not item.is_meaningful


async def test_to_item_respects_min_words():
    with patch("turnwise.audio.transcriber.WhisperModel") as mock_cls:
        mock_cls.return_value = _model_returning(" yes ")
        t = Transcriber(min_words=2)
        item = await t.to_item(AudioChunk(sequence=1, timestamp_utc=T0, audio=b"x"))
    assert item.text == "yes"
    assert item.word_count == 1
    assert not item.is_meaningful
