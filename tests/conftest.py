"""
Shared pytest fixtures for hybrid memory tests.

This module provides:
- Fact stores on temporary SQLite files
- Vector indexes on temporary ChromaDB directories
- Write-ahead logs
- Mock external services (OpenAI, LLM providers, embeddings)
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hybrid_memory.facts import FactStore
from hybrid_memory.memory.chroma_store import ChromaVectorIndex
from hybrid_memory.wal import WriteAheadLog
from tests.fixtures import TEST_DIM, StubEmbeddingService, make_llm


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path(tmp_path) -> str:
    """Provide a temporary SQLite database path."""
    return str(tmp_path / "facts.db")


@pytest.fixture
def fact_store(temp_db_path):
    """A FactStore on a fresh database file."""
    store = FactStore(db_path=temp_db_path)
    yield store
    store.close()


@pytest.fixture
def vector_index(tmp_path):
    """A real ChromaDB-backed index on a fresh directory."""
    index = ChromaVectorIndex(persist_directory=str(tmp_path / "vectors"), dimension=TEST_DIM)
    yield index
    index.close()


@pytest.fixture
def wal(tmp_path) -> WriteAheadLog:
    return WriteAheadLog(str(tmp_path / "memory.wal"))


@pytest.fixture
def embedding_service() -> StubEmbeddingService:
    return StubEmbeddingService()


# =============================================================================
# Mock External Services
# =============================================================================


@pytest.fixture
def mock_llm() -> MagicMock:
    return make_llm()


@pytest.fixture
def mock_openai():
    """Mock AsyncOpenAI for OpenAI API tests."""
    # Patch at the module where it's imported, not where it's defined
    with patch("hybrid_memory.llm.openai_client.AsyncOpenAI") as mock_client_class:
        mock_client = MagicMock()

        mock_message = MagicMock()
        mock_message.content = "NOOP | already known\n"

        mock_choice = MagicMock()
        mock_choice.message = mock_message

        mock_response = MagicMock()
        mock_response.choices = [mock_choice]
        mock_response.model = "gpt-4o-mini"
        mock_response.usage = MagicMock(
            prompt_tokens=100,
            completion_tokens=10,
            total_tokens=110,
        )

        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)
        mock_client_class.return_value = mock_client
        yield mock_client_class


@pytest.fixture
def mock_openai_embeddings():
    """Mock AsyncOpenAI for embedding tests. Every text embeds to a 1536-d vector."""
    with patch("openai.AsyncOpenAI") as mock_client_class:
        mock_client = MagicMock()

        async def create(model, input):
            texts = input if isinstance(input, list) else [input]
            data = [MagicMock(index=i, embedding=[0.1] * 1536) for i in range(len(texts))]
            # Out of order on purpose; callers must sort by index
            return MagicMock(data=list(reversed(data)))

        mock_client.embeddings.create = AsyncMock(side_effect=create)
        mock_client_class.return_value = mock_client
        yield mock_client_class


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key")


@pytest.fixture
def sample_config_yaml(tmp_path) -> Path:
    """Create a sample config.yaml file."""
    config_path = tmp_path / "config.yaml"
    config_content = f"""
embedding:
  provider: local
  model: all-MiniLM-L6-v2

storage:
  sqlite_path: {tmp_path / "facts.db"}
  vector_path: {tmp_path / "vectors"}
  wal_path: {tmp_path / "memory.wal"}

classification:
  enabled: false
  model: gpt-4o-mini
  candidate_limit: 3

store:
  fuzzy_dedupe: true
  categories:
    - project
  min_score: 0.4

logging:
  level: DEBUG
"""
    config_path.write_text(config_content)
    return config_path
