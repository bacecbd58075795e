"""PromptHandlingService: what happens after the state machine says a prompt is ready.

For each prompt:
    1. build the Prompt (system prompt + context providers)
    2. persist the user turn, so it is available to later turns
    3. ask the language model
    4. persist the assistant reply
    5. speak it (Processing -> Speaking -> Listening) or end processing (-> Listening)

Any failure is logged and the machine is returned to Listening.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from turnwise.clock import SystemTimeProvider, TimeProvider
from turnwise.context.rendering import serialize_prompt, user_message
from turnwise.exceptions import ConfigurationError
from turnwise.models import ChatMessage, ChatRole
from turnwise.pipeline.state_machine import ConversationObserver
from turnwise.speech import NoOpTextToSpeech

if TYPE_CHECKING:
    from turnwise.context.prompt_builder import PromptBuilder
    from turnwise.context.store import ConversationStore
    from turnwise.llm.client import OllamaClient
    from turnwise.pipeline.state_machine import ConversationStateMachine
    from turnwise.speech import TextToSpeech

logger = logging.getLogger(__name__)


class PromptHandlingService(ConversationObserver):
    def __init__(
        self,
        machine: ConversationStateMachine,
        builder: PromptBuilder,
        store: ConversationStore,
        llm: OllamaClient,
        loop: asyncio.AbstractEventLoop,
        last_n: int = 6,
        tts: TextToSpeech | None = None,
        tts_enabled: bool = False,
        clock: TimeProvider | None = None,
    ):
        if last_n <= 0:
            raise ConfigurationError(f"last_n must be positive, got {last_n}")
        self._machine = machine
        self._builder = builder
        self._store = store
        self._llm = llm
        self._loop = loop
        self._last_n = last_n
        self._tts = tts or NoOpTextToSpeech()
        self._tts_enabled = tts_enabled
        self._clock = clock or SystemTimeProvider()
        self._in_flight: set[asyncio.Task] = set()

    def prompt_ready(self, text: str) -> None:
        # May be called from the ticker's worker thread; hop onto the event loop
        self._loop.call_soon_threadsafe(self._spawn, text)

    def _spawn(self, text: str) -> None:
        task = self._loop.create_task(self.handle_prompt(text))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def handle_prompt(self, text: str) -> None:
        try:
            prompt = await self._builder.build(text, self._last_n)
            await self._store.append_message(user_message(prompt))
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Prompt:\n%s", serialize_prompt(prompt).log_json)

            logger.info("Calling language model (%d context messages)", len(prompt.context))
            reply = await self._llm.generate_reply(prompt)
            logger.info("Response: %s", reply[:200])

            await self._store.append_message(
                ChatMessage(role=ChatRole.ASSISTANT, content=reply, timestamp_utc=self._clock.now())
            )

            if self._tts_enabled and reply:
                self._machine.begin_speaking()
                try:
                    await self._tts.speak(reply)
                finally:
                    self._machine.end_speaking()
            else:
                self._machine.end_processing()
        except asyncio.CancelledError:
            self._recover()
            raise
        except Exception:
            logger.exception("Error handling prompt")
            self._recover()

    def _recover(self) -> None:
        if self._machine.is_speaking:
            self._machine.end_speaking()
        else:
            self._machine.end_processing()

    async def wait_for_in_flight(self, timeout: float = 30.0) -> None:
        """Wait for all in-flight prompt tasks to complete."""
        if not self._in_flight:
            return
        logger.info("Waiting for %d in-flight prompts (timeout=%.1fs)", len(self._in_flight), timeout)
        done, pending = await asyncio.wait(self._in_flight, timeout=timeout)
        if pending:
            logger.warning("%d prompts still running after timeout", len(pending))
