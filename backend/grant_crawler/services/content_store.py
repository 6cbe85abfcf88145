"""
Content Store - durable record of scraped pages and documents.

Rows are unique per (job_id, url). Later pipeline stages update the same
row in place as they attach structured data and AI analysis.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grant_crawler.core.models import ContentType, ProcessingStatus
from grant_crawler.db.database import async_session_maker, get_db_session
from grant_crawler.db.models import ScrapedContentModel

logger = structlog.get_logger()


def clamp_confidence(value: Any, default: float) -> float:
    """Coerce to float and clamp into [0, 1]; fall back to default on junk."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(max(number, 0.0), 1.0)


class ContentStore:
    """Data access for ScrapedContentModel."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self.session_maker = session_maker or async_session_maker

    async def upsert(
        self,
        job_id: str,
        url: str,
        *,
        title: str | None,
        content: str | None,
        markdown: str | None,
        html: str | None,
        metadata: dict[str, Any] | None = None,
        content_type: ContentType = ContentType.PAGE,
        processing_status: ProcessingStatus = ProcessingStatus.PROCESSING,
    ) -> ScrapedContentModel:
        """Insert or refresh the row for (job_id, url)."""
        fields = {
            "title": title,
            "content": content,
            "markdown": markdown,
            "html": html,
            "page_metadata": metadata or {},
            "content_type": content_type.value,
            "processing_status": processing_status.value,
        }

        async with get_db_session(self.session_maker) as db:
            existing = await self._find(db, job_id, url)
            if existing is None:
                row = ScrapedContentModel(job_id=job_id, url=url, **fields)
                db.add(row)
                try:
                    await db.commit()
                except IntegrityError:
                    # Lost an insert race for the same (job_id, url)
                    await db.rollback()
                    existing = await self._find(db, job_id, url)
                    if existing is None:
                        raise
                else:
                    await db.refresh(row)
                    return row

            for key, value in fields.items():
                setattr(existing, key, value)
            existing.updated_at = datetime.now(UTC)
            await db.commit()
            await db.refresh(existing)
            return existing

    async def _find(self, db: AsyncSession, job_id: str, url: str) -> ScrapedContentModel | None:
        result = await db.execute(
            select(ScrapedContentModel).where(
                ScrapedContentModel.job_id == job_id,
                ScrapedContentModel.url == url,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, content_id: str) -> ScrapedContentModel | None:
        async with get_db_session(self.session_maker) as db:
            return await db.get(ScrapedContentModel, content_id)

    async def _update(self, content_id: str, **values: Any) -> None:
        values["updated_at"] = datetime.now(UTC)
        async with get_db_session(self.session_maker) as db:
            await db.execute(
                update(ScrapedContentModel)
                .where(ScrapedContentModel.id == content_id)
                .values(**values)
            )
            await db.commit()

    async def attach_structured_data(self, content_id: str, structured_data: list[Any]) -> None:
        await self._update(content_id, structured_data=structured_data)

    async def save_analysis(
        self,
        content_id: str,
        analysis: dict[str, Any],
        confidence: float,
    ) -> None:
        """Store an AI analysis blob and mark the row ai_analyzed."""
        await self._update(
            content_id,
            ai_analysis=analysis,
            confidence_score=clamp_confidence(confidence, 0.5),
            processing_status=ProcessingStatus.AI_ANALYZED.value,
        )

    async def mark_analysis_failed(self, content_id: str, error: dict[str, Any]) -> None:
        await self._update(
            content_id,
            ai_analysis=error,
            processing_status=ProcessingStatus.AI_FAILED.value,
        )

    async def set_status(self, content_id: str, status: ProcessingStatus) -> None:
        await self._update(content_id, processing_status=status.value)

    async def latest_for_url(self, url: str, exclude_job_id: str) -> ScrapedContentModel | None:
        """Most recent fetch of url by any other job."""
        async with get_db_session(self.session_maker) as db:
            result = await db.execute(
                select(ScrapedContentModel)
                .where(
                    ScrapedContentModel.url == url,
                    ScrapedContentModel.job_id != exclude_job_id,
                    ScrapedContentModel.content_type != ContentType.AI_EXTRACTION.value,
                )
                .order_by(ScrapedContentModel.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_for_job(
        self,
        job_id: str,
        *,
        content_type: ContentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ScrapedContentModel], int]:
        conditions = [ScrapedContentModel.job_id == job_id]
        if content_type:
            conditions.append(ScrapedContentModel.content_type == ContentType(content_type).value)

        async with get_db_session(self.session_maker) as db:
            total = await db.scalar(
                select(func.count(ScrapedContentModel.id)).where(*conditions)
            ) or 0
            result = await db.execute(
                select(ScrapedContentModel)
                .where(*conditions)
                .order_by(ScrapedContentModel.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total
