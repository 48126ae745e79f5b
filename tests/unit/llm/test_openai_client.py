"""
Unit tests for hybrid_memory/llm/openai_client.py and factory.py

Tests OpenAI provider with mocked AsyncOpenAI client.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hybrid_memory.llm.base import LLMResponse


class TestOpenAIProvider:
    """Tests for OpenAIProvider class."""

    def test_init(self):
        """Test provider initialization."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = OpenAIProvider(api_key="test-key", model="gpt-4o")

        assert provider._api_key == "test-key"
        assert provider._model == "gpt-4o"
        assert provider._client is None  # Lazy loaded

    def test_provider_name(self):
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = OpenAIProvider(api_key="test-key")
        assert provider.provider_name == "OpenAI"
        assert provider.model_name == "gpt-4o-mini"

    def test_is_configured(self):
        """Test is_configured follows the API key."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        assert OpenAIProvider(api_key="test-key").is_configured() is True
        assert OpenAIProvider(api_key="").is_configured() is False

    def test_get_client_reuses_client(self, mock_openai):
        """Test that _get_client creates the client once."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = OpenAIProvider(api_key="test-key")
        client1 = provider._get_client()
        client2 = provider._get_client()

        assert client1 is client2
        mock_openai.assert_called_once_with(api_key="test-key")

    @pytest.mark.asyncio
    async def test_generate_with_prompt(self, mock_openai):
        """Test generating a judgment line."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = OpenAIProvider(api_key="test-key")
        response = await provider.generate(prompt="Classify this.")

        assert isinstance(response, LLMResponse)
        # Trailing newline from the API is stripped
        assert response.content == "NOOP | already known"
        assert response.model == "gpt-4o-mini"

        call_kwargs = mock_openai.return_value.chat.completions.create.call_args.kwargs
        assert call_kwargs["messages"] == [{"role": "user", "content": "Classify this."}]
        assert call_kwargs["temperature"] == 0.0
        assert call_kwargs["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_generate_with_system_prompt(self, mock_openai):
        """Test that the system prompt is sent first."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = OpenAIProvider(api_key="test-key")
        await provider.generate(prompt="Classify this.", system_prompt="Answer in one line.")

        messages = mock_openai.return_value.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "Answer in one line."}
        assert messages[1]["role"] == "user"

    @pytest.mark.asyncio
    async def test_generate_usage_tracking(self, mock_openai):
        """Test that usage metadata is tracked."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = OpenAIProvider(api_key="test-key")
        response = await provider.generate(prompt="Test")

        assert response.usage == {"prompt_tokens": 100, "completion_tokens": 10, "total_tokens": 110}
        assert response.token_count == 110
        assert response.raw_response is not None

    @pytest.mark.asyncio
    async def test_generate_none_content(self, mock_openai):
        """Test that an empty completion becomes an empty string."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        mock_message = MagicMock()
        mock_message.content = None
        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=mock_message)]
        mock_response.model = "gpt-4o-mini"
        mock_response.usage = None
        mock_openai.return_value.chat.completions.create = AsyncMock(return_value=mock_response)

        provider = OpenAIProvider(api_key="test-key")
        response = await provider.generate(prompt="Test")

        assert response.content == ""
        assert response.usage is None
        assert response.token_count == 0

    @pytest.mark.asyncio
    async def test_generate_handles_api_error(self, mock_openai):
        """Test that API errors are propagated."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        mock_openai.return_value.chat.completions.create = AsyncMock(
            side_effect=Exception("API Error")
        )

        provider = OpenAIProvider(api_key="test-key")

        with pytest.raises(Exception, match="API Error"):
            await provider.generate(prompt="Test")

    @pytest.mark.asyncio
    async def test_model_passed(self, mock_openai):
        """Test that model is passed correctly."""
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = OpenAIProvider(api_key="test-key", model="gpt-4o")
        await provider.generate(prompt="Test", temperature=0.9, max_tokens=50)

        call_kwargs = mock_openai.return_value.chat.completions.create.call_args.kwargs
        assert call_kwargs["model"] == "gpt-4o"
        assert call_kwargs["temperature"] == 0.9
        assert call_kwargs["max_tokens"] == 50


class TestCreateLLMProvider:
    """Tests for the provider factory."""

    def test_creates_openai(self):
        from hybrid_memory.llm.factory import create_llm_provider
        from hybrid_memory.llm.openai_client import OpenAIProvider

        provider = create_llm_provider(provider="openai", api_key="test-key", model="gpt-4o")
        assert isinstance(provider, OpenAIProvider)
        assert provider.model_name == "gpt-4o"

    def test_missing_key(self):
        from hybrid_memory.llm.factory import create_llm_provider

        with pytest.raises(ValueError, match="API key"):
            create_llm_provider(provider="openai", api_key="")

    def test_unsupported_provider(self):
        from hybrid_memory.llm.factory import create_llm_provider

        with pytest.raises(ValueError, match="Unsupported"):
            create_llm_provider(provider="cohere", api_key="test-key")
