"""
AI Extractor Interface

Contract for anything that turns free text into candidate funding records.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class AnalysisResult(BaseModel):
    """Raw extractor output.

    `records` holds the candidates exactly as the model returned them;
    field coercion and clamping happen in the analysis stage.
    """

    records: list[dict[str, Any]] = Field(default_factory=list)
    overall_confidence: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AIExtractorInterface(ABC):
    """Abstract interface for AI extractors."""

    @abstractmethod
    async def analyze(self, content: str, prompt: str | None = None) -> AnalysisResult:
        """Extract candidate records from text content.

        Args:
            content: Markdown or plain text, already truncated by the caller
            prompt: Optional caller-supplied extraction instructions

        Returns:
            AnalysisResult with zero or more candidate records
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name for logging."""
        pass
