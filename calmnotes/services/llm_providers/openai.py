"""
OpenAI LLM Provider
===================

OpenAI implementation of BaseLLMProvider using the async SDK.
"""

from typing import Any, Dict, Optional

from openai import APIError, AsyncOpenAI
from openai import AuthenticationError as OpenAIAuthError
from openai import RateLimitError as OpenAIRateLimitError

from calmnotes.config import settings
from .base import AuthenticationError, BaseLLMProvider, LLMProviderError, RateLimitError


class OpenAIProvider(BaseLLMProvider):
    """OpenAI chat-completions provider (default model ``gpt-4o``)."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise AuthenticationError(
                "OpenAI API key not found. Set CALMNOTES_OPENAI_API_KEY in environment.",
                provider="openai",
            )

        self.client = AsyncOpenAI(api_key=api_key)
        self.model_name = model or settings.llm_model or "gpt-4o"

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs
    ) -> str:
        """Generate a complete response using OpenAI Chat Completions."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=self._build_messages(prompt, system_prompt),
                temperature=temperature,
                max_completion_tokens=max_tokens,
            )
            return response.choices[0].message.content or ""

        except OpenAIRateLimitError as e:
            raise RateLimitError(
                "OpenAI API rate limit exceeded. Please try again later.",
                provider="openai",
                original_error=e,
            )
        except OpenAIAuthError as e:
            raise AuthenticationError(
                "OpenAI API key is invalid.",
                provider="openai",
                original_error=e,
            )
        except APIError as e:
            raise LLMProviderError(
                f"OpenAI API error: {str(e)}",
                provider="openai",
                original_error=e,
            )

    def _build_messages(self, prompt: str, system_prompt: Optional[str]) -> list:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "provider": "openai",
            "model": self.model_name,
            "capabilities": ["generate", "chat"],
        }
