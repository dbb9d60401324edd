"""
Pytest configuration and shared fixtures.

Provides a controllable clock, a fake model invoker and ready-wired
components for the AIOps test suite.

IMPORTANT: Environment variables must be set BEFORE importing aiops modules
that use pydantic-settings, as Settings validates on import.
"""

import os

# Set test environment variables before importing aiops modules
os.environ["OPENAI_API_KEY"] = "test-key-not-real"
os.environ["GROQ_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DEBUG"] = "false"
os.environ.pop("DATABASE_PATH", None)
os.environ.pop("REDIS_URL", None)
os.environ.pop("JUDGE_ENABLED", None)

# Now safe to import everything else
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

from aiops.config import Settings
from aiops.metrics.recorder import MetricRecord, MetricsRecorder
from aiops.quality.scorer import QualityScorer
from aiops.storage.repository import InMemoryStore

from fixtures import OKR_RESPONSE, FakeClock, FakeInvoker


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


@pytest.fixture
def clock():
    """A FakeClock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def store():
    """A fresh in-memory append-only store."""
    return InMemoryStore()


@pytest.fixture
def invoker():
    """A FakeInvoker with default responses."""
    return FakeInvoker()


@pytest.fixture
def recorder(store, clock):
    """MetricsRecorder over the in-memory store and fake clock."""
    return MetricsRecorder(store, clock=clock)


@pytest.fixture
def scorer(store, clock):
    """Heuristic-only QualityScorer."""
    return QualityScorer(store, clock=clock)


@pytest.fixture
def make_record(clock):
    """
    Factory fixture for MetricRecord objects ending at the current time.

    Usage:
        record = make_record(latency_ms=1200, cost=0.002)
    """

    def _create(
        operation: str = "generate_okr",
        model: str = "openai/gpt-4o-mini",
        latency_ms: float = 1000.0,
        end: float | None = None,
        cost: float = 0.001,
        success: bool = True,
        quality_score: float | None = None,
        user_id: str | None = None,
        input_tokens: int = 100,
        output_tokens: int = 200,
    ) -> MetricRecord:
        end_time = clock() if end is None else end
        return MetricRecord(
            operation=operation,
            model=model,
            start_time=end_time - latency_ms / 1000,
            end_time=end_time,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            success=success,
            quality_score=quality_score,
            user_id=user_id,
            error=None if success else "provider error",
        )

    return _create


@pytest.fixture
def mock_groq_response():
    """Create a mock Groq chat completion response."""
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content="Groq says hello"))]
    response.usage = MagicMock(prompt_tokens=100, completion_tokens=50)
    return response


@pytest.fixture
def mock_openai_response():
    """Create a mock OpenAI chat completion response."""
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=OKR_RESPONSE))]
    response.usage = MagicMock(prompt_tokens=150, completion_tokens=200)
    return response


@pytest.fixture
def mock_embedding_response():
    """Create a mock OpenAI embeddings response with a 1536-d vector."""
    response = MagicMock()
    response.data = [MagicMock(embedding=[0.1] * 1536)]
    response.usage = MagicMock(prompt_tokens=8)
    return response


@pytest.fixture
def mock_groq_client(mock_groq_response):
    """Create a fully mocked AsyncGroq client."""
    mock = AsyncMock()
    mock.chat = MagicMock()
    mock.chat.completions = MagicMock()
    mock.chat.completions.create = AsyncMock(return_value=mock_groq_response)
    return mock


@pytest.fixture
def mock_openai_client(mock_openai_response, mock_embedding_response):
    """Create a fully mocked AsyncOpenAI client."""
    mock = AsyncMock()
    mock.chat = MagicMock()
    mock.chat.completions = MagicMock()
    mock.chat.completions.create = AsyncMock(return_value=mock_openai_response)
    mock.embeddings = MagicMock()
    mock.embeddings.create = AsyncMock(return_value=mock_embedding_response)
    return mock


@pytest.fixture
def mock_provider_clients(mock_groq_client, mock_openai_client):
    """
    Create a mocked ProviderClients instance.

    Provides both Groq and OpenAI clients as mocks.
    """
    mock_clients = MagicMock()
    mock_clients.groq = mock_groq_client
    mock_clients.openai = mock_openai_client
    return mock_clients


@pytest.fixture
def settings():
    """Settings from the test environment only (no .env file)."""
    return Settings(_env_file=None)


@pytest.fixture
def services(settings, store, invoker, clock):
    """Fully wired service container on fakes."""
    from aiops.services import AIOpsServices

    return AIOpsServices.build(settings, store=store, invoker=invoker, clock=clock)


@pytest.fixture
def test_client(services):
    """
    Create a FastAPI TestClient around the fake-backed service container.

    The container is installed on app.state before startup so the
    lifespan uses it instead of building one from the environment.
    """
    from aiops.main import app

    app.state.services = services
    with TestClient(app) as client:
        yield client
    del app.state.services
