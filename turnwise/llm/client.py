from __future__ import annotations

import logging
import re

import httpx

from turnwise.context.rendering import render_messages
from turnwise.models import Prompt

logger = logging.getLogger(__name__)


class OllamaClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        model: str,
        output_filters: list[str] | None = None,
    ):
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._output_filters = [f for f in (output_filters or []) if f]

    @property
    def model(self) -> str:
        return self._model

    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        think: bool = False,
    ) -> str:
        url = f"{self._base_url}/api/chat"
        use_model = model or self._model

        payload: dict = {
            "model": use_model,
            "messages": messages,
            "stream": False,
        }
        if think:
            payload["think"] = True

        resp = await self._http.post(url, json=payload)
        if resp.status_code == 404:
            logger.error(
                "Ollama model '%s' not found, download it with: ollama pull %s",
                use_model,
                use_model,
            )
        resp.raise_for_status()
        data = resp.json()
        content = data["message"].get("content", "")

        if content:
            logger.debug("LLM raw response: %s", content[:500])
            # Strip deepseek/qwen reasoning blocks: <think>...</think>
            content = re.sub(r"<think>.*?</think>\n*", "", content, flags=re.DOTALL)
            # Edge-cases if the LLM gets truncated exactly after opening or closing tags
            content = content.split("</think>")[-1]
            content = content.split("<think>")[0].strip()

        return content

    async def generate_reply(self, prompt: Prompt) -> str:
        """Send system prompt, context and user turn; return the filtered reply text."""
        reply = await self.chat(render_messages(prompt))
        for f in self._output_filters:
            reply = reply.replace(f, "")
        return reply.strip()

    async def is_available(self) -> bool:
        try:
            resp = await self._http.get(
                f"{self._base_url}/api/tags",
                timeout=5.0,
            )
            return resp.status_code == 200
        except httpx.HTTPError:
            return False
