from .base import AuthenticationError, BaseLLMProvider, LLMProviderError, RateLimitError
from .openai import OpenAIProvider

__all__ = ["BaseLLMProvider", "LLMProviderError", "RateLimitError", "AuthenticationError", "OpenAIProvider"]
