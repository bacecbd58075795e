from fastapi import APIRouter, Request

from turnwise.dependencies import get_ollama_client, get_state_machine
from turnwise.models import HealthResponse, OllamaCheck

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    ollama_ok = await get_ollama_client(request).is_available()
    return HealthResponse(
        status="ok" if ollama_ok else "degraded",
        mode=get_state_machine(request).mode,
        checks=OllamaCheck(available=ollama_ok),
    )
