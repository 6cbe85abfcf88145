"""
AI-Analysis Stage.

Pre-filters content, calls the AI extractor with a bounded retry, and turns
its raw candidates into ExtractedRecord rows. Candidate coercion lives here
so no extractor output reaches storage unchecked: titles must be non-empty,
text is length-bounded and every confidence is clamped into [0, 1].
"""

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from grant_crawler.core.config import settings
from grant_crawler.core.exceptions import AnalysisError
from grant_crawler.services.ai import AIExtractorInterface, AnalysisResult
from grant_crawler.services.content_store import ContentStore, clamp_confidence
from grant_crawler.services.record_store import RecordStore

if TYPE_CHECKING:
    from grant_crawler.jobs.strategies.base import JobContext

logger = structlog.get_logger()

GRANT_KEYWORDS = (
    "grant",
    "funding",
    "application",
    "deadline",
    "eligibility",
    "award",
    "scholarship",
    "finance",
    "budget",
    "proposal",
)

MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 2000
DEFAULT_CURRENCY = "EUR"


# =============================================================================
# Candidate coercion
# =============================================================================


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace(",", "").strip()
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _to_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return [item for item in value if item not in (None, "")]
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [value]


def normalize_candidate(
    raw: dict[str, Any],
    *,
    default_confidence: float,
    confidence_override: float | None = None,
) -> dict[str, Any] | None:
    """
    Coerce one raw candidate into ExtractedRecordModel fields.

    Returns None for candidates without a usable title.
    """
    title = raw.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if not title:
        return None

    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        description = str(description)

    amount = raw.get("amount") if isinstance(raw.get("amount"), dict) else {}
    currency = amount.get("currency") or raw.get("currency") or DEFAULT_CURRENCY
    currency = str(currency).strip().upper()[:3] or DEFAULT_CURRENCY

    contact = raw.get("contactInfo", raw.get("contact_info"))

    if confidence_override is not None:
        confidence = clamp_confidence(confidence_override, default_confidence)
    else:
        confidence = raw.get("confidence")
        confidence = default_confidence if confidence in (None, "") else clamp_confidence(confidence, default_confidence)

    return {
        "title": title[:MAX_TITLE_LENGTH],
        "description": description[:MAX_DESCRIPTION_LENGTH] if description else None,
        "amount_min": _to_float(amount.get("min", raw.get("amount_min"))),
        "amount_max": _to_float(amount.get("max", raw.get("amount_max"))),
        "currency": currency,
        "deadline": _to_date(raw.get("deadline")),
        "eligibility": _to_list(raw.get("eligibility")),
        "categories": _to_list(raw.get("categories")),
        "contact_info": contact if isinstance(contact, dict) else {},
        "confidence_score": confidence,
    }


def has_grant_keywords(content: str) -> bool:
    lowered = content.lower()
    return any(keyword in lowered for keyword in GRANT_KEYWORDS)


# =============================================================================
# Stage
# =============================================================================


class AnalysisStage:
    def __init__(
        self,
        extractor: AIExtractorInterface | None,
        content_store: ContentStore,
        record_store: RecordStore,
        *,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ):
        self.extractor = extractor
        self.content_store = content_store
        self.record_store = record_store
        self.max_attempts = max_attempts or settings.ai_max_attempts
        self.retry_delay = settings.ai_retry_delay if retry_delay is None else retry_delay

    @property
    def enabled(self) -> bool:
        return self.extractor is not None

    def should_analyze(self, content: str) -> bool:
        """Cheap pre-filter: long enough and mentions at least one grant keyword."""
        if len(content) < settings.ai_min_content_length:
            return False
        return has_grant_keywords(content)

    async def extract_candidates(self, content: str, prompt: str | None = None) -> AnalysisResult:
        """
        Call the extractor with a fixed-delay retry.

        Raises AnalysisError (details carry the attempt count) when every
        attempt fails.
        """
        if self.extractor is None:
            raise AnalysisError("AI extraction is not configured", details={"attempts": 0})

        truncated = content[: settings.ai_max_content_chars]
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.retry_delay),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return await self.extractor.analyze(truncated, prompt)
        except AnalysisError as e:
            e.details.setdefault("attempts", attempts)
            raise
        except Exception as e:
            raise AnalysisError(
                f"AI analysis failed after {attempts} attempts: {e}",
                details={"attempts": attempts},
            ) from e

    async def persist_records(
        self,
        content_id: str,
        candidates: list[dict[str, Any]],
        *,
        default_confidence: float,
        confidence_override: float | None = None,
        ai_metadata: dict[str, Any] | None = None,
    ) -> int:
        """Store every valid candidate; returns how many were stored."""
        saved = 0
        for raw in candidates:
            fields = normalize_candidate(
                raw,
                default_confidence=default_confidence,
                confidence_override=confidence_override,
            )
            if fields is None:
                logger.warning("Skipping candidate with empty title", content_id=content_id)
                continue
            await self.record_store.create(content_id, ai_metadata=ai_metadata or {}, **fields)
            saved += 1
        return saved

    async def analyze(
        self,
        ctx: "JobContext",
        content_id: str,
        content: str,
        prompt: str | None = None,
    ) -> bool:
        """
        Analyse one content row.

        Returns False when the row was skipped (AI off or pre-filter),
        True once it is ai_analyzed. On extractor failure the row becomes
        ai_failed, the job's error counter is bumped and AnalysisError is
        raised.
        """
        if self.extractor is None:
            return False

        log = ctx.log.bind(content_id=content_id)
        if not self.should_analyze(content):
            log.debug("Skipping AI analysis", content_length=len(content))
            return False

        log.info("Starting AI content analysis", content_length=len(content))
        try:
            result = await self.extract_candidates(content, prompt or ctx.config.extraction_prompt)
        except AnalysisError as e:
            ctx.stats.errors_encountered += 1
            await self.content_store.mark_analysis_failed(
                content_id,
                {
                    "error": e.message,
                    "failed_at": datetime.now(UTC).isoformat(),
                    "attempts": e.details.get("attempts", self.max_attempts),
                },
            )
            log.error("AI analysis failed", error=e.message)
            raise

        saved = await self.persist_records(
            content_id,
            result.records,
            default_confidence=settings.analysis_default_confidence,
            ai_metadata=result.metadata,
        )
        ctx.stats.records_found += saved

        blob = result.model_dump(mode="json")
        blob["analyzed_at"] = datetime.now(UTC).isoformat()
        blob["content_length"] = len(content)
        overall = result.overall_confidence
        await self.content_store.save_analysis(
            content_id,
            blob,
            clamp_confidence(overall, settings.content_default_confidence)
            if overall is not None
            else settings.content_default_confidence,
        )
        ctx.stats.ai_analyzed += 1

        log.info("AI analysis completed", records_found=saved, confidence=overall)
        return True
