"""LLM provider interfaces."""

from .provider import LLMProvider, OllamaProvider, PromptContext, StaticResponseProvider

__all__ = [
    "LLMProvider",
    "PromptContext",
    "StaticResponseProvider",
    "OllamaProvider",
]
