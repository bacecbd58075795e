from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from turnwise.context.store import ConversationStore
    from turnwise.models import ChatMessage


class ContextProvider(Protocol):
    """Supplies prior messages relevant to the current prompt, oldest first."""

    async def get_context(self, current_prompt: str, n: int) -> list[ChatMessage]: ...


class SystemPromptProvider(Protocol):
    async def get_system_prompt(self) -> str: ...


class LastNContextProvider:
    """Pure recency: the prompt text is ignored and the store tail is returned as-is."""

    def __init__(self, store: ConversationStore):
        self._store = store

    async def get_context(self, current_prompt: str, n: int) -> list[ChatMessage]:
        return await self._store.read_tail(n)


class StaticSystemPromptProvider:
    def __init__(self, base_prompt: str | None):
        self._base_prompt = base_prompt or ""

    async def get_system_prompt(self) -> str:
        return self._base_prompt
