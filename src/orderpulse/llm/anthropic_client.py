"""Anthropic Claude LLM client, used as the failover parser model."""
from __future__ import annotations

import time

import anthropic
import structlog

from .base import LLMClient, LLMResponse
from .retry import call_with_retry

logger = structlog.get_logger(__name__)

JSON_ONLY_SUFFIX = "Respond with valid JSON only."


class AnthropicClient(LLMClient):
    """LLM client for Claude models.

    When ``endpoint`` is provided, the client connects to a deployment that
    exposes an Anthropic-compatible Messages endpoint (e.g. Azure AI
    Foundry) instead of the Anthropic API directly.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        timeout: int = 120,
        endpoint: str | None = None,
    ):
        self._model = model
        self._timeout = timeout

        if endpoint:
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key,
                base_url=endpoint.rstrip("/"),
                timeout=float(timeout),
                max_retries=0,
            )
            self._provider = "azure_ai"
        else:
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=float(timeout),
                max_retries=0,
            )
            self._provider = "anthropic"

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Text-only completion using the Anthropic Messages API."""
        messages = [{"role": "user", "content": user_prompt}]

        if json_mode and not system_prompt.rstrip().endswith(JSON_ONLY_SUFFIX):
            system_prompt = system_prompt.rstrip() + "\n\n" + JSON_ONLY_SUFFIX

        attempts = 0

        async def _call() -> LLMResponse:
            nonlocal attempts
            attempts += 1
            start = time.monotonic()
            response = await self._client.messages.create(
                model=self._model,
                system=system_prompt,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            elapsed_ms = int((time.monotonic() - start) * 1000)

            content_text = ""
            for block in response.content:
                if block.type == "text":
                    content_text += block.text

            return LLMResponse(
                content=content_text,
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                finish_reason=response.stop_reason or "",
                latency_ms=elapsed_ms,
                attempts=attempts,
            )

        return await call_with_retry(_call, operation=f"{self._provider}:{self._model}")

    def get_model_name(self) -> str:
        """Return the model name being used."""
        return f"{self._model} ({self._provider})"
