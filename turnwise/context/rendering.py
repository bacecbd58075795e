"""Renderers that turn a Prompt into what a language model (or a log line) consumes."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime

from turnwise.models import ChatMessage, ChatRole, Prompt


@dataclass(frozen=True)
class PromptSerialization:
    prompt_json: str
    log_json: str


def render_messages(prompt: Prompt) -> list[dict[str, str]]:
    """Chat-style messages: system first, then history, then the live user turn."""
    messages: list[dict[str, str]] = []
    if prompt.system:
        messages.append({"role": ChatRole.SYSTEM.value, "content": prompt.system})
    for m in prompt.context:
        messages.append({"role": m.role.value, "content": m.content})
    messages.append({"role": ChatRole.USER.value, "content": prompt.user_input})
    return messages


def serialize_prompt(prompt: Prompt) -> PromptSerialization:
    payload = {
        "systemPrompt": prompt.system,
        "history": [_message_dict(m.role, m.content, m.timestamp_utc) for m in prompt.context],
        "user": _message_dict(ChatRole.USER, prompt.user_input, prompt.now_utc),
        "hints": dict(prompt.hints or {}),
    }
    return PromptSerialization(
        prompt_json=json.dumps(payload, ensure_ascii=False, separators=(",", ":")),
        log_json=json.dumps(payload, ensure_ascii=False, indent=2),
    )


def user_message(prompt: Prompt) -> ChatMessage:
    """The live user turn as a storable message, stamped with the prompt's build time."""
    return ChatMessage(role=ChatRole.USER, content=prompt.user_input, timestamp_utc=prompt.now_utc)


def _message_dict(role: ChatRole, content: str, timestamp: datetime) -> dict[str, str]:
    return {"role": role.value, "content": content, "timestampUtc": timestamp.isoformat()}
