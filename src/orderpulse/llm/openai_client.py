"""OpenAI LLM client using Azure OpenAI deployments."""
from __future__ import annotations

import time

import openai
import structlog

from .base import LLMClient, LLMResponse
from .retry import call_with_retry

logger = structlog.get_logger(__name__)


class OpenAIClient(LLMClient):
    """LLM client for GPT models deployed via Azure OpenAI Service.

    The pipeline uses two deployments: a small model for the pre-filter and
    a larger one for classification and parsing.  ``model`` is the
    deployment name.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "orderpulse-parser",
        azure_endpoint: str = "",
        timeout: int = 120,
    ):
        self._model = model
        self._timeout = timeout

        if not azure_endpoint:
            raise ValueError(
                "azure_endpoint is required: GPT models must be accessed "
                "via Azure OpenAI Service."
            )

        # SDK-level retries are disabled; call_with_retry owns the policy
        self._client = openai.AsyncAzureOpenAI(
            api_key=api_key,
            azure_endpoint=azure_endpoint,
            api_version="2024-06-01",
            timeout=float(timeout),
            max_retries=0,
        )

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Text-only completion using the Azure OpenAI Chat Completions API."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        kwargs: dict = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        attempts = 0

        async def _call() -> LLMResponse:
            nonlocal attempts
            attempts += 1
            start = time.monotonic()
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
            elapsed_ms = int((time.monotonic() - start) * 1000)
            choice = response.choices[0] if response.choices else None
            usage = response.usage
            return LLMResponse(
                content=(choice.message.content or "") if choice else "",
                model=response.model or self._model,
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
                finish_reason=(choice.finish_reason or "") if choice else "",
                latency_ms=elapsed_ms,
                attempts=attempts,
            )

        result = await call_with_retry(_call, operation=f"azure_openai:{self._model}")
        logger.debug(
            "openai_completion",
            model=self._model,
            latency_ms=result.latency_ms,
            attempts=result.attempts,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )
        return result

    def get_model_name(self) -> str:
        """Return the deployment name being used."""
        return f"{self._model} (azure_openai)"
