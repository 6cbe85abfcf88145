"""
SQLAlchemy ORM models for Grant Crawler.

Organized into sections:
- Crawl Job Tables
- Content Tables
- Extraction Tables

JSON columns use the generic JSON type so the schema runs on both
PostgreSQL and SQLite.
"""

from datetime import date, datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from grant_crawler.core.models import ContentType, JobStatus, ProcessingStatus
from grant_crawler.db.database import Base


def _new_id() -> str:
    return str(uuid4())


class TimestampMixin:
    """Mixin for created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )


# ==============================================================================
# Crawl Job Tables
# ==============================================================================


class CrawlJobModel(Base, TimestampMixin):
    """Crawl job with its configuration and running stats."""

    __tablename__ = "crawl_jobs"
    __table_args__ = (
        Index("idx_crawl_jobs_status", "status"),
        Index("idx_crawl_jobs_priority", "priority"),
        Index("idx_crawl_jobs_owner", "owner_id"),
        Index("idx_crawl_jobs_org", "organization_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Status
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.PENDING.value)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)

    stats: Mapped[dict] = mapped_column(JSON, default=dict)
    configuration: Mapped[dict] = mapped_column(JSON, default=dict)
    result: Mapped[dict | None] = mapped_column(JSON)

    webhook_url: Mapped[str | None] = mapped_column(Text)
    priority: Mapped[int] = mapped_column(Integer, default=0)

    # Ownership
    owner_id: Mapped[str | None] = mapped_column(String(255))
    organization_id: Mapped[str | None] = mapped_column(String(255))

    # Timestamps
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    content: Mapped[list["ScrapedContentModel"]] = relationship(
        back_populates="job", cascade="all, delete-orphan"
    )


# ==============================================================================
# Content Tables
# ==============================================================================


class ScrapedContentModel(Base, TimestampMixin):
    """One fetched page or document within a job."""

    __tablename__ = "scraped_content"
    __table_args__ = (
        UniqueConstraint("job_id", "url", name="uq_scraped_content_job_url"),
        Index("idx_scraped_content_type", "content_type"),
        Index("idx_scraped_content_status", "processing_status"),
        Index("idx_scraped_content_url", "url"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("crawl_jobs.id", ondelete="CASCADE"), index=True
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)
    markdown: Mapped[str | None] = mapped_column(Text)
    html: Mapped[str | None] = mapped_column(Text)

    # "metadata" is reserved on declarative classes
    page_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    structured_data: Mapped[list] = mapped_column(JSON, default=list)
    ai_analysis: Mapped[dict] = mapped_column(JSON, default=dict)

    confidence_score: Mapped[float] = mapped_column(Float, default=0.5)
    content_type: Mapped[str] = mapped_column(String(50), default=ContentType.PAGE.value)
    processing_status: Mapped[str] = mapped_column(
        String(20), default=ProcessingStatus.PENDING.value
    )

    job: Mapped["CrawlJobModel"] = relationship(back_populates="content")
    records: Mapped[list["ExtractedRecordModel"]] = relationship(
        back_populates="content", cascade="all, delete-orphan"
    )


# ==============================================================================
# Extraction Tables
# ==============================================================================


class ExtractedRecordModel(Base):
    """Candidate funding opportunity recognized in scraped content."""

    __tablename__ = "extracted_records"
    __table_args__ = (
        Index("idx_extracted_records_deadline", "deadline"),
        Index("idx_extracted_records_confidence", "confidence_score"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    content_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scraped_content.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    amount_min: Mapped[float | None] = mapped_column(Float)
    amount_max: Mapped[float | None] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    deadline: Mapped[date | None] = mapped_column(Date)

    eligibility: Mapped[list] = mapped_column(JSON, default=list)
    categories: Mapped[list] = mapped_column(JSON, default=list)
    contact_info: Mapped[dict] = mapped_column(JSON, default=dict)

    confidence_score: Mapped[float] = mapped_column(Float, default=0.5)
    ai_metadata: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    content: Mapped["ScrapedContentModel"] = relationship(back_populates="records")
