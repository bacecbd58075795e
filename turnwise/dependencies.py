from __future__ import annotations

from fastapi import Request

from turnwise.audio.transcriber import Transcriber
from turnwise.config import Settings
from turnwise.llm.client import OllamaClient
from turnwise.pipeline.runner import TurnRunner
from turnwise.pipeline.state_machine import ConversationStateMachine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ollama_client(request: Request) -> OllamaClient:
    return request.app.state.ollama_client


def get_state_machine(request: Request) -> ConversationStateMachine:
    return request.app.state.state_machine


def get_runner(request: Request) -> TurnRunner:
    return request.app.state.runner


def get_transcriber(request: Request) -> Transcriber:
    return request.app.state.transcriber
