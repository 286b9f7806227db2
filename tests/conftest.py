"""Shared test fixtures."""
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from sqlalchemy.pool import StaticPool
from orderpulse.llm.base import LLMClient, LLMResponse
from orderpulse.config import Settings
from orderpulse.prompts.registry import PromptRegistry
from orderpulse.storage.database import close_db, create_tables, init_db


@pytest.fixture
def mock_settings():
    """Create test settings with dummy values."""
    return Settings(
        azure_openai_endpoint="https://test.openai.azure.com",
        azure_openai_api_key="test-azure-openai-key",
        database_url="sqlite+aiosqlite://",
        blob_connection_string="",
        enable_failover=False,
    )


@pytest.fixture
def mock_llm_client():
    """Create a mock LLM client."""
    client = AsyncMock(spec=LLMClient)
    client.get_model_name.return_value = "mock-model"
    client.complete_text.return_value = LLMResponse(
        content='{"test": "response"}',
        model="mock-model",
        input_tokens=100,
        output_tokens=50,
    )
    return client


@pytest.fixture
def prompt_registry():
    return PromptRegistry()


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite database with all tables, shared by every session."""
    factory = init_db("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_tables()
    yield factory
    await close_db()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
