"""Primary/fallback pair of completion clients."""
from __future__ import annotations
import structlog
from ..errors import CompletionError
from .base import LLMClient, LLMResponse

logger = structlog.get_logger(__name__)


class FailoverLLMClient(LLMClient):
    """Sends each completion to *primary*, then to *fallback* if it gave up.

    Only ``CompletionError`` (retries exhausted) triggers the fallback; any
    other exception from the primary propagates unchanged, as does a
    ``CompletionError`` from the fallback.
    """

    def __init__(self, primary: LLMClient, fallback: LLMClient):
        self._primary = primary
        self._fallback = fallback
        self._failover_count = 0

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        options = dict(temperature=temperature, max_tokens=max_tokens, json_mode=json_mode)
        try:
            return await self._primary.complete_text(system_prompt, user_prompt, **options)
        except CompletionError as e:
            self._failover_count += 1
            logger.warning(
                "primary_llm_failed",
                error=str(e),
                attempts=e.attempts,
                model=self._primary.get_model_name(),
                fallback_model=self._fallback.get_model_name(),
            )

        response = await self._fallback.complete_text(system_prompt, user_prompt, **options)
        logger.info("fallback_llm_succeeded", model=response.model, failovers=self._failover_count)
        return response

    def get_model_name(self) -> str:
        return f"{self._primary.get_model_name()} (failover: {self._fallback.get_model_name()})"

    @property
    def failover_count(self) -> int:
        return self._failover_count
