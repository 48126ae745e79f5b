"""
LLM Provider Factory.

Creates the judgment provider used for memory classification.
"""

import logging
from typing import Literal

from .base import LLMProvider
from .openai_client import OpenAIProvider

logger = logging.getLogger("hybrid_memory.llm.factory")


def create_llm_provider(
    provider: Literal["openai"] = "openai",
    api_key: str = "",
    model: str = "gpt-4o-mini",
) -> LLMProvider:
    """
    Create an LLM provider.

    Args:
        provider: Which provider to use. Only "openai" is supported.
        api_key: API key for the provider.
        model: Chat model to classify with.

    Returns:
        Configured LLMProvider instance.

    Raises:
        ValueError: If provider is not supported or not properly configured.
    """
    logger.info(f"Creating LLM provider: {provider} ({model})")

    if provider == "openai":
        if not api_key:
            raise ValueError("OpenAI API key is required when using OpenAI provider")
        return OpenAIProvider(api_key=api_key, model=model)

    raise ValueError(f"Unsupported LLM provider: {provider}")
