"""Test failover LLM client."""
import pytest
from unittest.mock import AsyncMock
from orderpulse.errors import CompletionError
from orderpulse.llm.base import LLMClient, LLMResponse
from orderpulse.llm.failover import FailoverLLMClient


@pytest.fixture
def primary():
    client = AsyncMock(spec=LLMClient)
    client.get_model_name.return_value = "primary-model"
    return client

@pytest.fixture
def fallback():
    client = AsyncMock(spec=LLMClient)
    client.get_model_name.return_value = "fallback-model"
    return client


class TestFailover:
    @pytest.mark.asyncio
    async def test_primary_succeeds(self, primary, fallback):
        response = LLMResponse(content="ok", model="primary-model")
        primary.complete_text.return_value = response

        client = FailoverLLMClient(primary, fallback)
        result = await client.complete_text("sys", "user")

        assert result.content == "ok"
        primary.complete_text.assert_called_once()
        fallback.complete_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_primary_exhausted_fallback_called(self, primary, fallback):
        primary.complete_text.side_effect = CompletionError("rate limited", attempts=3, last_status=429)
        fallback_response = LLMResponse(content="fallback ok", model="fallback-model")
        fallback.complete_text.return_value = fallback_response

        client = FailoverLLMClient(primary, fallback)
        result = await client.complete_text("sys", "user", max_tokens=512, json_mode=True)

        assert result.content == "fallback ok"
        assert client.failover_count == 1
        fallback.complete_text.assert_awaited_once_with(
            "sys", "user", temperature=0.0, max_tokens=512, json_mode=True
        )

    @pytest.mark.asyncio
    async def test_non_retryable_error_does_not_fail_over(self, primary, fallback):
        primary.complete_text.side_effect = ValueError("bad request")

        client = FailoverLLMClient(primary, fallback)
        with pytest.raises(ValueError):
            await client.complete_text("sys", "user")
        fallback.complete_text.assert_not_called()
        assert client.failover_count == 0

    @pytest.mark.asyncio
    async def test_both_fail_raises(self, primary, fallback):
        primary.complete_text.side_effect = CompletionError("primary down", attempts=3, last_status=503)
        fallback.complete_text.side_effect = CompletionError("fallback down", attempts=3, last_status=503)

        client = FailoverLLMClient(primary, fallback)
        with pytest.raises(CompletionError, match="fallback down"):
            await client.complete_text("sys", "user")

    def test_model_name_mentions_both(self, primary, fallback):
        client = FailoverLLMClient(primary, fallback)
        assert client.get_model_name() == "primary-model (failover: fallback-model)"
