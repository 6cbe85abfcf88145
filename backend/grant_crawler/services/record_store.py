"""
Extraction Store - structured funding-opportunity records.

Records are written once by the AI stage and only read afterwards.
"""

from datetime import date
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grant_crawler.core.models import ExtractedRecord
from grant_crawler.db.database import async_session_maker, get_db_session
from grant_crawler.db.models import ExtractedRecordModel, ScrapedContentModel

logger = structlog.get_logger()


class RecordStore:
    """Data access for ExtractedRecordModel."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self.session_maker = session_maker or async_session_maker

    async def create(self, content_id: str, **fields: Any) -> ExtractedRecordModel:
        record = ExtractedRecordModel(content_id=content_id, **fields)
        async with get_db_session(self.session_maker) as db:
            db.add(record)
            await db.commit()
            await db.refresh(record)
        return record

    async def query(
        self,
        *,
        job_id: str | None = None,
        min_confidence: float | None = None,
        deadline_after: date | None = None,
        deadline_before: date | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ExtractedRecord], int]:
        """
        Filtered page of records joined with their source content.

        Sorted by confidence desc, then newest first.
        """
        conditions = []
        if job_id:
            conditions.append(ScrapedContentModel.job_id == job_id)
        if min_confidence is not None:
            conditions.append(ExtractedRecordModel.confidence_score >= min_confidence)
        if deadline_after:
            conditions.append(ExtractedRecordModel.deadline >= deadline_after)
        if deadline_before:
            conditions.append(ExtractedRecordModel.deadline <= deadline_before)

        join_on = ExtractedRecordModel.content_id == ScrapedContentModel.id

        async with get_db_session(self.session_maker) as db:
            total = await db.scalar(
                select(func.count(ExtractedRecordModel.id))
                .join(ScrapedContentModel, join_on)
                .where(*conditions)
            ) or 0

            result = await db.execute(
                select(ExtractedRecordModel, ScrapedContentModel.url, ScrapedContentModel.title)
                .join(ScrapedContentModel, join_on)
                .where(*conditions)
                .order_by(
                    ExtractedRecordModel.confidence_score.desc(),
                    ExtractedRecordModel.created_at.desc(),
                )
                .offset(offset)
                .limit(limit)
            )

            records = []
            for record, source_url, source_title in result.all():
                item = ExtractedRecord.model_validate(record)
                item.source_url = source_url
                item.source_title = source_title
                records.append(item)
            return records, total
