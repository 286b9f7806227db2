"""Completion-service interface shared by the classifier and the extractors."""
from __future__ import annotations
from abc import ABC, abstractmethod
from pydantic import BaseModel


class LLMResponse(BaseModel):
    """One completion, after any retries."""
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = ""
    latency_ms: int = 0
    attempts: int = 1

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMClient(ABC):
    """A chat model reachable over the network.

    Implementations retry throttling and server errors themselves and raise
    ``CompletionError`` once their attempts are used up.
    """

    @abstractmethod
    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        ...

    @abstractmethod
    def get_model_name(self) -> str:
        ...
