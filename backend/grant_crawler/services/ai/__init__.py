"""
AI Service Package

Provides the extractor abstraction and its OpenAI-compatible implementation.
"""

from grant_crawler.core.config import settings
from grant_crawler.services.ai.interface import AIExtractorInterface, AnalysisResult
from grant_crawler.services.ai.openai_extractor import OpenAIExtractor


def get_ai_extractor() -> AIExtractorInterface | None:
    """Configured extractor, or None when AI_API_URL / AI_MODEL are unset."""
    if not settings.ai_enabled:
        return None
    return OpenAIExtractor()


__all__ = [
    "AIExtractorInterface",
    "AnalysisResult",
    "OpenAIExtractor",
    "get_ai_extractor",
]
