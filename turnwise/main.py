import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from turnwise.api.router import router as api_router
from turnwise.audio.transcriber import Transcriber
from turnwise.config import Settings
from turnwise.context.prompt_builder import PromptBuilder
from turnwise.context.providers import LastNContextProvider, StaticSystemPromptProvider
from turnwise.context.store import FileConversationStore
from turnwise.health.router import router as health_router
from turnwise.llm.client import OllamaClient
from turnwise.logging_config import configure_logging
from turnwise.pipeline.prompt_handler import PromptHandlingService
from turnwise.pipeline.runner import TurnRunner
from turnwise.pipeline.state_machine import ConversationStateMachine
from turnwise.pipeline.suppression import FeedbackSuppressor
from turnwise.speech import NoOpTextToSpeech

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()

    configure_logging(
        level=settings.log_level, json_format=settings.log_json, log_file=settings.log_file
    )

    http_client = httpx.AsyncClient(timeout=httpx.Timeout(600.0, connect=10.0))

    # Conversation store and prompt assembly
    store = FileConversationStore(settings.conversation_dir, settings.encryption_key)
    builder = PromptBuilder(
        StaticSystemPromptProvider(settings.system_prompt),
        [LastNContextProvider(store)],
    )

    ollama_client = OllamaClient(
        http_client=http_client,
        base_url=settings.ollama_base_url,
        model=settings.ollama_model,
        output_filters=settings.output_filter_list,
    )

    machine = ConversationStateMachine(
        wake_word=settings.wake_word,
        processing_silence=settings.processing_silence,
        end_silence=settings.end_silence,
        logger=logging.getLogger("turnwise.conversation"),
    )
    suppressor = FeedbackSuppressor(tail=settings.suppress_tail)
    prompt_handler = PromptHandlingService(
        machine=machine,
        builder=builder,
        store=store,
        llm=ollama_client,
        loop=asyncio.get_running_loop(),
        last_n=settings.context_last_n,
        tts=NoOpTextToSpeech(),
        tts_enabled=settings.tts_enabled,
    )
    machine.subscribe(suppressor)
    machine.subscribe(prompt_handler)

    runner = TurnRunner(
        machine,
        suppressor=suppressor,
        queue_capacity=settings.transcription_queue_capacity,
        tick_interval=settings.ticker_interval,
    )

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.store = store
    app.state.ollama_client = ollama_client
    app.state.state_machine = machine
    app.state.prompt_handler = prompt_handler
    app.state.runner = runner
    app.state.transcriber = Transcriber(
        model_size=settings.whisper_model,
        device=settings.whisper_device,
        compute_type=settings.whisper_compute_type,
        min_words=settings.min_words,
    )

    await runner.start()

    # Warmup: pre-load the Ollama model to avoid cold-start on the first prompt
    try:
        await ollama_client.chat([{"role": "user", "content": "hi"}])
        logger.info("Ollama model warmed up")
    except Exception:
        logger.warning("Model warmup failed (non-critical)", exc_info=True)

    yield

    await runner.stop()
    await prompt_handler.wait_for_in_flight(timeout=30.0)
    await http_client.aclose()


app = FastAPI(title="turnwise", lifespan=lifespan)
app.include_router(health_router)
app.include_router(api_router)
