"""
Job Store - durable record of crawl jobs.

Every mutation is one session and one committed row update. Status changes
go through conditional updates (WHERE status IN ...) so two writers can
never both move a job out of the same state.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grant_crawler.core.models import (
    CrawlConfig,
    JobStatistics,
    JobStats,
    JobStatus,
    JobType,
)
from grant_crawler.db.database import async_session_maker, get_db_session
from grant_crawler.db.models import CrawlJobModel

logger = structlog.get_logger()


class JobStore:
    """Data access for CrawlJobModel."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self.session_maker = session_maker or async_session_maker

    async def create(
        self,
        source_url: str,
        job_type: JobType,
        configuration: CrawlConfig,
        *,
        priority: int = 0,
        webhook_url: str | None = None,
        owner_id: str | None = None,
        organization_id: str | None = None,
    ) -> CrawlJobModel:
        """Insert a new job in pending state."""
        job = CrawlJobModel(
            source_url=source_url,
            job_type=job_type.value,
            status=JobStatus.PENDING.value,
            progress=0,
            stats=JobStats().model_dump(),
            configuration=configuration.model_dump(),
            priority=priority,
            webhook_url=webhook_url,
            owner_id=owner_id,
            organization_id=organization_id,
        )
        async with get_db_session(self.session_maker) as db:
            db.add(job)
            await db.commit()
            await db.refresh(job)

        logger.info("Job persisted", job_id=job.id, job_type=job.job_type, priority=priority)
        return job

    async def get(self, job_id: str) -> CrawlJobModel | None:
        async with get_db_session(self.session_maker) as db:
            return await db.get(CrawlJobModel, job_id)

    async def list_jobs(
        self,
        *,
        owner_id: str | None = None,
        organization_id: str | None = None,
        status: JobStatus | None = None,
        job_type: JobType | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[CrawlJobModel], int]:
        """Filtered page of jobs, priority desc then newest first."""
        conditions = []
        if owner_id:
            conditions.append(CrawlJobModel.owner_id == owner_id)
        if organization_id:
            conditions.append(CrawlJobModel.organization_id == organization_id)
        if status:
            conditions.append(CrawlJobModel.status == JobStatus(status).value)
        if job_type:
            conditions.append(CrawlJobModel.job_type == JobType(job_type).value)

        async with get_db_session(self.session_maker) as db:
            total = await db.scalar(
                select(func.count(CrawlJobModel.id)).where(*conditions)
            ) or 0

            query = (
                select(CrawlJobModel)
                .where(*conditions)
                .order_by(CrawlJobModel.priority.desc(), CrawlJobModel.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            result = await db.execute(query)
            return list(result.scalars().all()), total

    async def list_by_status(self, status: JobStatus) -> list[CrawlJobModel]:
        """All jobs in one status, oldest first."""
        async with get_db_session(self.session_maker) as db:
            result = await db.execute(
                select(CrawlJobModel)
                .where(CrawlJobModel.status == status.value)
                .order_by(CrawlJobModel.created_at.asc())
            )
            return list(result.scalars().all())

    async def transition(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        *,
        error_message: str | None = None,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        progress: int | None = None,
        stats: JobStats | None = None,
        result: dict[str, Any] | None = None,
    ) -> CrawlJobModel | None:
        """
        Move a job to to_status if it is currently in one of from_statuses.

        Returns the updated row, or None when the job was not in a legal
        source state (or does not exist).
        """
        values: dict[str, Any] = {
            "status": to_status.value,
            "updated_at": datetime.now(UTC),
        }
        if error_message is not None:
            values["error_message"] = error_message
        if started_at is not None:
            values["started_at"] = started_at
        if completed_at is not None:
            values["completed_at"] = completed_at
        if progress is not None:
            values["progress"] = progress
        if result is not None:
            values["result"] = result

        async with get_db_session(self.session_maker) as db:
            if stats is not None:
                current = await db.scalar(
                    select(CrawlJobModel.stats).where(CrawlJobModel.id == job_id)
                )
                values["stats"] = stats.merged_with(current).model_dump()

            res = await db.execute(
                update(CrawlJobModel)
                .where(
                    CrawlJobModel.id == job_id,
                    CrawlJobModel.status.in_([s.value for s in from_statuses]),
                )
                .values(**values)
            )
            await db.commit()

            if res.rowcount == 0:
                return None
            return await db.get(CrawlJobModel, job_id, populate_existing=True)

    async def update_progress(
        self,
        job_id: str,
        progress: int,
        stats: JobStats | None = None,
    ) -> int | None:
        """
        Record progress (and optionally stats) for a running job.

        Progress never moves backwards and never reaches 100 here; 100 is
        written only by the completion transition. Returns the stored
        progress, or None if the job is not running.
        """
        async with get_db_session(self.session_maker) as db:
            row = (
                await db.execute(
                    select(CrawlJobModel.progress, CrawlJobModel.stats).where(
                        CrawlJobModel.id == job_id,
                        CrawlJobModel.status == JobStatus.RUNNING.value,
                    )
                )
            ).one_or_none()
            if row is None:
                return None

            current_progress, current_stats = row
            new_progress = max(current_progress or 0, min(int(progress), 99))
            values: dict[str, Any] = {
                "progress": new_progress,
                "updated_at": datetime.now(UTC),
            }
            if stats is not None:
                values["stats"] = stats.merged_with(current_stats).model_dump()

            await db.execute(
                update(CrawlJobModel)
                .where(
                    CrawlJobModel.id == job_id,
                    CrawlJobModel.status == JobStatus.RUNNING.value,
                )
                .values(**values)
            )
            await db.commit()
            return new_progress

    async def statistics(
        self,
        *,
        owner_id: str | None = None,
        organization_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> JobStatistics:
        """Aggregate job counts and stats counters."""
        conditions = []
        if owner_id:
            conditions.append(CrawlJobModel.owner_id == owner_id)
        if organization_id:
            conditions.append(CrawlJobModel.organization_id == organization_id)
        if start_date:
            conditions.append(CrawlJobModel.created_at >= start_date)
        if end_date:
            conditions.append(CrawlJobModel.created_at <= end_date)

        async with get_db_session(self.session_maker) as db:
            rows = (
                await db.execute(
                    select(CrawlJobModel.status, CrawlJobModel.stats).where(*conditions)
                )
            ).all()

        summary = JobStatistics(total_jobs=len(rows))
        processing_times = []
        for status, raw_stats in rows:
            stats = JobStats.model_validate(raw_stats or {})
            if status == JobStatus.COMPLETED.value:
                summary.completed_jobs += 1
            elif status == JobStatus.FAILED.value:
                summary.failed_jobs += 1
            summary.total_pages += stats.pages_scraped
            summary.total_documents += stats.documents_processed
            summary.total_records += stats.records_found
            if stats.processing_time_ms:
                processing_times.append(stats.processing_time_ms)

        if processing_times:
            summary.average_processing_time_ms = int(sum(processing_times) / len(processing_times))
        return summary
