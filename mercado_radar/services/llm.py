"""Gemini language-model backend."""

from __future__ import annotations

import logging

import google.generativeai as genai

from mercado_radar.config import Settings, get_settings
from mercado_radar.schemas import LLMResponse, TokenUsage

logger = logging.getLogger(__name__)


class GeminiClient:
    """Sends a text prompt to Gemini and returns the raw text answer.

    No retries: a failed call propagates to the caller.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._model = None

    def _get_model(self):
        if self._model is None:
            genai.configure(api_key=self.settings.gemini_api_key)
            self._model = genai.GenerativeModel(
                model_name=self.settings.gemini_model,
                generation_config=genai.GenerationConfig(
                    temperature=0.1,
                    top_p=0.95,
                    max_output_tokens=8192,
                    response_mime_type="application/json",
                ),
            )
        return self._model

    async def generate(self, prompt: str) -> LLMResponse:
        response = await self._get_model().generate_content_async(prompt)
        text = (response.text or "").strip()
        usage = self._usage_from(response)
        logger.debug(
            "Gemini answered %d chars (tokens: %s)",
            len(text),
            usage.total_tokens if usage else "n/a",
        )
        return LLMResponse(text=text, usage=usage)

    @staticmethod
    def _usage_from(response) -> TokenUsage | None:
        metadata = getattr(response, "usage_metadata", None)
        if metadata is None:
            return None
        return TokenUsage(
            prompt_tokens=getattr(metadata, "prompt_token_count", 0) or 0,
            candidates_tokens=getattr(metadata, "candidates_token_count", 0) or 0,
            total_tokens=getattr(metadata, "total_token_count", 0) or 0,
        )
