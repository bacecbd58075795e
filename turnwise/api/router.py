"""Ingest endpoints for an external recorder or recognizer, plus a state probe."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Query, Request

from turnwise.audio.transcriber import AudioChunk
from turnwise.dependencies import get_runner, get_settings, get_state_machine, get_transcriber
from turnwise.models import (
    AcceptedResponse,
    StateResponse,
    TranscriptionIn,
    TranscriptionItem,
    count_words,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/transcriptions", response_model=AcceptedResponse)
async def post_transcription(body: TranscriptionIn, request: Request) -> AcceptedResponse:
    settings = get_settings(request)
    timestamp = body.timestamp_utc or datetime.now(UTC)

    if body.is_meaningful is None:
        item = TranscriptionItem.from_text(
            body.sequence, timestamp, body.text, min_words=settings.min_words
        )
    else:
        item = TranscriptionItem(
            sequence=body.sequence,
            timestamp_utc=timestamp,
            text=body.text,
            is_meaningful=body.is_meaningful,
            word_count=count_words(body.text),
        )

    get_runner(request).submit(item)
    return AcceptedResponse(accepted=True, sequence=item.sequence, is_meaningful=item.is_meaningful)


@router.post("/audio", response_model=AcceptedResponse)
async def post_audio(
    request: Request,
    sequence: int = Query(...),
    suffix: str = Query(default=".wav"),
) -> AcceptedResponse:
    audio = await request.body()
    chunk = AudioChunk(
        sequence=sequence,
        timestamp_utc=datetime.now(UTC),
        audio=audio,
        suffix=suffix,
    )
    item = await get_transcriber(request).to_item(chunk)
    get_runner(request).submit(item)
    return AcceptedResponse(accepted=True, sequence=item.sequence, is_meaningful=item.is_meaningful)


@router.get("/state", response_model=StateResponse)
async def get_state(request: Request) -> StateResponse:
    machine = get_state_machine(request)
    return StateResponse(
        mode=machine.mode,
        mode_entered_at=machine.mode_entered_at,
        buffered_items=machine.buffered_count,
    )
