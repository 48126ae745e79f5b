"""
LLM Provider Interface Module.

The classification step only needs one short completion per observation,
so any chat model behind the LLMProvider interface will do.
"""

from .base import LLMProvider, LLMResponse
from .openai_client import OpenAIProvider
from .factory import create_llm_provider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
    "create_llm_provider",
]
