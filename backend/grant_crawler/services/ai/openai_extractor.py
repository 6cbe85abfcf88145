"""
OpenAI-compatible extractor.

Works against any chat-completions endpoint that honours
response_format={"type": "json_object"} (OpenAI, OpenRouter, Ollama, ...).
"""

import json
import time
from typing import Any

import structlog
from openai import AsyncOpenAI

from grant_crawler.core.config import settings
from grant_crawler.core.exceptions import AnalysisError
from grant_crawler.services.ai.interface import AIExtractorInterface, AnalysisResult
from grant_crawler.services.ai.prompts import build_prompt

logger = structlog.get_logger()


class OpenAIExtractor(AIExtractorInterface):
    """Text-mode extractor backed by AsyncOpenAI."""

    # Maximum tokens to output (prevents runaway generation)
    MAX_OUTPUT_TOKENS = 4096

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        api_url = api_url or settings.ai_api_url
        model = model or settings.ai_model
        if not model or (client is None and not api_url):
            raise RuntimeError("AI extraction not configured. Set AI_API_URL and AI_MODEL.")

        self._model = model
        self.client = client or AsyncOpenAI(
            base_url=api_url,
            api_key=api_key or settings.ai_api_key or "ollama",  # Ollama needs non-empty string
            timeout=settings.ai_timeout,
        )

    @property
    def model_name(self) -> str:
        return self._model

    async def analyze(self, content: str, prompt: str | None = None) -> AnalysisResult:
        logger.info("ai_extract_text_start", model=self._model, content_len=len(content))

        full_prompt = f"{build_prompt(prompt)}\n\n---\n\nContent to extract from:\n\n{content}"
        started = time.monotonic()

        response = await self.client.chat.completions.create(
            model=self._model,
            messages=[{"role": "user", "content": full_prompt}],
            response_format={"type": "json_object"},
            max_tokens=self.MAX_OUTPUT_TOKENS,
        )

        response_content = response.choices[0].message.content or ""
        try:
            payload = json.loads(response_content)
        except json.JSONDecodeError as e:
            logger.error("ai_extract_json_error", error=str(e), content=response_content[:500])
            raise AnalysisError(f"AI returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise AnalysisError("AI returned a non-object JSON payload")

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        records = _records_from_payload(payload)
        logger.info("ai_extract_text_success", model=self._model, records=len(records))

        return AnalysisResult(
            records=records,
            overall_confidence=_first_present(payload, "overallConfidence", "overall_confidence"),
            metadata={
                "model": self._model,
                "processing_time_ms": int((time.monotonic() - started) * 1000),
                "usage": usage,
            },
        )


def _first_present(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _records_from_payload(payload: dict[str, Any]) -> list[dict[str, Any]]:
    raw = _first_present(payload, "grants", "records", "data") or []
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]
