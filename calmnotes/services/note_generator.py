"""
Note Generator
==============

Turns raw session notes / transcripts into a structured clinical note
(SOAP, DAP or BIRP) via the configured LLM provider.

Usage accounting is not done here; the notes router runs the generation
gate before and records usage only after ``generate()`` returns.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from calmnotes.config import settings
from calmnotes.core.errors import CalmNotesError
from calmnotes.services.llm_providers import (
    AuthenticationError,
    BaseLLMProvider,
    LLMProviderError,
    OpenAIProvider,
    RateLimitError,
)

logger = logging.getLogger(__name__)

FORMAT_SECTIONS = {
    "SOAP": "Subjective, Objective, Assessment, Plan",
    "DAP": "Data, Assessment, Plan",
    "BIRP": "Behavior, Intervention, Response, Plan",
}

USER_PROMPT = "Generate the note."


@dataclass(frozen=True)
class GenerationRequest:
    format: str
    raw_notes: Optional[str] = None
    transcript: Optional[str] = None
    client_name: Optional[str] = None
    session_type: Optional[str] = None
    risk_flags: Optional[str] = None


def build_system_prompt(request: GenerationRequest) -> str:
    definitions = "\n".join(f"- {key}: {sections}" for key, sections in FORMAT_SECTIONS.items())
    input_lines = []
    if request.raw_notes:
        input_lines.append(f"Raw Notes: {request.raw_notes}")
    if request.transcript:
        input_lines.append(f"Transcript: {request.transcript}")

    return (
        "You are a clinical documentation assistant.\n"
        "Your task is to generate a professional, clinically sound session note "
        f"in {request.format} format.\n\n"
        f"Format Definitions:\n{definitions}\n\n"
        "Guidelines:\n"
        "- Use professional, objective, clinical language.\n"
        "- Maintain patient privacy (do not hallucinate identifying details if not provided).\n"
        "- Highlight any provided risk factors clearly.\n"
        f"- If risk flags are provided: {request.risk_flags or 'None'}, "
        "ensure they are addressed in the assessment/intervention.\n"
        f"- Session Type: {request.session_type or 'Not specified'}.\n"
        f"- Client Name: {request.client_name or 'Client'}.\n\n"
        "Input Data:\n"
        + "\n".join(input_lines)
        + "\n\nOutput the note structure clearly. Do not include conversational filler. "
        "Just the note content."
    )


class NoteGenerator:
    def __init__(self, provider: Optional[BaseLLMProvider] = None):
        self._provider = provider

    @property
    def provider(self) -> BaseLLMProvider:
        if self._provider is None:
            try:
                self._provider = OpenAIProvider()
            except AuthenticationError as exc:
                raise CalmNotesError("LLM_NOT_CONFIGURED", detail=exc.message)
        return self._provider

    async def generate(self, request: GenerationRequest) -> str:
        """
        Generate note content.

        Raises:
            CalmNotesError: LLM_NOT_CONFIGURED, LLM_RATE_LIMITED or
                LLM_GENERATION_FAILED.
        """
        provider = self.provider
        try:
            content = await provider.generate(
                USER_PROMPT,
                system_prompt=build_system_prompt(request),
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            )
        except RateLimitError as exc:
            logger.warning("LLM rate limited: provider=%s", exc.provider)
            raise CalmNotesError("LLM_RATE_LIMITED", detail=exc.message)
        except LLMProviderError as exc:
            logger.error("LLM generation failed: provider=%s error=%s", exc.provider, exc.message)
            raise CalmNotesError("LLM_GENERATION_FAILED", detail=exc.message)

        return content or "Failed to generate note."


note_generator = NoteGenerator()
