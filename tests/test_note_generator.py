"""
Note Generator & OpenAI Provider Tests
======================================

The OpenAI client is replaced with AsyncMock; no network calls.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from calmnotes.core.errors import CalmNotesError
from calmnotes.services.llm_providers import (
    AuthenticationError,
    LLMProviderError,
    OpenAIProvider,
    RateLimitError,
)
from calmnotes.services.note_generator import GenerationRequest, NoteGenerator, build_system_prompt


def _completion(text):
    return MagicMock(choices=[MagicMock(message=MagicMock(content=text))])


@pytest.fixture
def provider():
    p = OpenAIProvider(api_key="sk-test", model="gpt-4o")
    p.client = MagicMock()
    p.client.chat.completions.create = AsyncMock(return_value=_completion("S: ..."))
    return p


class TestSystemPrompt:
    def test_includes_format_and_inputs(self):
        prompt = build_system_prompt(
            GenerationRequest(
                format="BIRP",
                raw_notes="client tearful",
                transcript="T: how are you",
                client_name="J. Doe",
                session_type="Couples",
                risk_flags="SI history",
            )
        )
        assert "in BIRP format" in prompt
        assert "BIRP: Behavior, Intervention, Response, Plan" in prompt
        assert "Raw Notes: client tearful" in prompt
        assert "Transcript: T: how are you" in prompt
        assert "Client Name: J. Doe" in prompt
        assert "Session Type: Couples" in prompt
        assert "SI history" in prompt

    def test_defaults_for_missing_fields(self):
        prompt = build_system_prompt(GenerationRequest(format="SOAP", raw_notes="x"))
        assert "Client Name: Client" in prompt
        assert "Session Type: Not specified" in prompt
        assert "risk flags are provided: None" in prompt
        assert "Transcript:" not in prompt


class TestOpenAIProvider:
    def test_missing_key_raises(self, monkeypatch):
        from calmnotes.config import settings

        monkeypatch.setattr(settings, "openai_api_key", None)
        with pytest.raises(AuthenticationError):
            OpenAIProvider()

    async def _generate(self, provider):
        return await provider.generate("Generate the note.", system_prompt="sys", temperature=0.7, max_tokens=1500)

    def test_generate_sends_system_and_user_messages(self, provider):
        import asyncio

        assert asyncio.run(self._generate(provider)) == "S: ..."
        kwargs = provider.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "Generate the note."},
        ]
        assert kwargs["max_completion_tokens"] == 1500

    def test_rate_limit_mapped(self, provider):
        import asyncio

        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        provider.client.chat.completions.create.side_effect = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=request), body=None
        )
        with pytest.raises(RateLimitError):
            asyncio.run(self._generate(provider))

    def test_api_error_mapped(self, provider):
        import asyncio

        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        provider.client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)
        with pytest.raises(LLMProviderError):
            asyncio.run(self._generate(provider))


class TestNoteGenerator:
    def _run(self, generator, request):
        import asyncio

        return asyncio.run(generator.generate(request))

    def test_returns_content(self):
        fake = MagicMock()
        fake.generate = AsyncMock(return_value="D: ...\nA: ...\nP: ...")
        content = self._run(NoteGenerator(provider=fake), GenerationRequest(format="DAP", raw_notes="x"))
        assert content.startswith("D:")
        assert fake.generate.call_args.kwargs["max_tokens"] == 1500

    def test_provider_failure_becomes_generation_failed(self):
        fake = MagicMock()
        fake.generate = AsyncMock(side_effect=LLMProviderError("boom", provider="openai"))
        with pytest.raises(CalmNotesError) as exc_info:
            self._run(NoteGenerator(provider=fake), GenerationRequest(format="SOAP", raw_notes="x"))
        assert exc_info.value.code == "LLM_GENERATION_FAILED"

    def test_provider_rate_limit_becomes_llm_rate_limited(self):
        fake = MagicMock()
        fake.generate = AsyncMock(side_effect=RateLimitError("busy", provider="openai"))
        with pytest.raises(CalmNotesError) as exc_info:
            self._run(NoteGenerator(provider=fake), GenerationRequest(format="SOAP", raw_notes="x"))
        assert exc_info.value.code == "LLM_RATE_LIMITED"

    def test_unconfigured_provider(self, monkeypatch):
        from calmnotes.config import settings

        monkeypatch.setattr(settings, "openai_api_key", None)
        with pytest.raises(CalmNotesError) as exc_info:
            NoteGenerator().provider
        assert exc_info.value.code == "LLM_NOT_CONFIGURED"
