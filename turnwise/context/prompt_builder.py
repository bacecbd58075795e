"""PromptBuilder: assembles the per-turn Prompt from a system prompt source and context providers.

Usage:
    builder = PromptBuilder(StaticSystemPromptProvider(base), [LastNContextProvider(store)])
    prompt = await builder.build(user_text, desired_context_n=6)

Providers are queried concurrently; their results are concatenated in provider order with
each provider's own ordering preserved. Sizing is the providers' job: nothing is truncated
or deduplicated here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from turnwise.clock import SystemTimeProvider, TimeProvider
from turnwise.models import Prompt

if TYPE_CHECKING:
    from turnwise.context.providers import ContextProvider, SystemPromptProvider

logger = logging.getLogger(__name__)


class PromptBuilder:
    def __init__(
        self,
        system_provider: SystemPromptProvider,
        context_providers: Iterable[ContextProvider] = (),
        clock: TimeProvider | None = None,
    ):
        self._system = system_provider
        self._providers = tuple(context_providers)
        self._clock = clock or SystemTimeProvider()

    async def build(
        self,
        user_input: str,
        desired_context_n: int,
        hints: dict[str, str] | None = None,
    ) -> Prompt:
        now = self._clock.now()

        system, *parts = await asyncio.gather(
            self._system.get_system_prompt(),
            *(p.get_context(user_input, desired_context_n) for p in self._providers),
        )

        context = [message for part in parts if part for message in part]
        logger.debug(
            "Prompt built: %d context messages from %d providers",
            len(context),
            len(self._providers),
        )
        return Prompt(
            system=system,
            context=tuple(context),
            user_input=user_input,
            now_utc=now,
            hints=hints,
        )
