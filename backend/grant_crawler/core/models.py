"""
Core models and types for Grant Crawler.

Enums are shared with db/models.py; the Pydantic schemas are used for
configuration validation and API serialization.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums (used by db/models.py)
# =============================================================================


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobType(str, Enum):
    FULL_CRAWL = "full_crawl"
    TARGETED_SCRAPE = "targeted_scrape"
    DOCUMENT_HARVEST = "document_harvest"
    LINK_DISCOVERY = "link_discovery"
    AI_EXTRACT = "ai_extract"
    MONITOR = "monitor"


class ContentType(str, Enum):
    PAGE = "page"
    DOCUMENT = "document"
    AI_EXTRACTION = "ai_extraction"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    AI_ANALYZED = "ai_analyzed"
    AI_FAILED = "ai_failed"


class LinkType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    DOCUMENT = "document"
    EMAIL = "email"
    PHONE = "phone"


# =============================================================================
# Base Models
# =============================================================================


class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(from_attributes=True)


class CamelSchema(BaseModel):
    """Accepts both snake_case and camelCase keys on input; always dumps snake_case."""
    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Job Configuration & Stats
# =============================================================================


class CrawlConfig(CamelSchema):
    """Validated crawl configuration stored with every job."""

    max_depth: int = Field(3, ge=1, le=10)
    include_patterns: list[str] = Field(default_factory=lambda: ["*"])
    exclude_patterns: list[str] = Field(default_factory=list)
    follow_external_links: bool = False
    capture_screenshots: bool = False
    extract_structured_data: bool = True
    process_documents: bool = True
    rate_limit_ms: int = Field(1000, ge=0, le=10000)
    ai_extraction: bool = True
    extraction_prompt: str | None = None


class JobStats(BaseModel):
    """Per-job counters. Counters only ever grow."""

    pages_scraped: int = 0
    documents_processed: int = 0
    links_discovered: int = 0
    records_found: int = 0
    errors_encountered: int = 0
    processing_time_ms: int = 0
    ai_analyzed: int = 0

    def merged_with(self, other: "JobStats | dict[str, Any] | None") -> "JobStats":
        """Return the per-counter maximum of self and other."""
        if other is None:
            return self.model_copy()
        if isinstance(other, dict):
            other = JobStats.model_validate(other)
        return JobStats(**{
            name: max(getattr(self, name), getattr(other, name))
            for name in JobStats.model_fields
        })


# =============================================================================
# Job Submission Models
# =============================================================================


class CrawlJobCreate(CamelSchema):
    source_url: str
    job_type: JobType
    configuration: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(0, ge=0, le=100)
    webhook_url: str | None = None
    owner_id: str | None = None
    organization_id: str | None = None


class BatchJobItem(CamelSchema):
    source_url: str
    job_type: JobType
    configuration: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(0, ge=0, le=100)


class BatchJobCreate(CamelSchema):
    jobs: list[BatchJobItem] = Field(..., min_length=1, max_length=50)
    owner_id: str | None = None
    organization_id: str | None = None


class ExtractRequest(CamelSchema):
    url: str
    extraction_prompt: str | None = None
    screenshot: bool = False
    owner_id: str | None = None
    organization_id: str | None = None


# =============================================================================
# Read Models
# =============================================================================


class CrawlJob(BaseSchema):
    id: str
    source_url: str
    job_type: JobType
    status: JobStatus
    progress: int = Field(0, ge=0, le=100)
    stats: JobStats = Field(default_factory=JobStats)
    configuration: CrawlConfig = Field(default_factory=CrawlConfig)
    result: dict[str, Any] | None = None
    webhook_url: str | None = None
    priority: int = 0
    owner_id: str | None = None
    organization_id: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


class ScrapedContent(BaseSchema):
    id: str
    job_id: str
    url: str
    title: str | None = None
    content: str | None = None
    markdown: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="page_metadata")
    structured_data: list[Any] = Field(default_factory=list)
    ai_analysis: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float = 0.5
    content_type: ContentType
    processing_status: ProcessingStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ExtractedRecord(BaseSchema):
    id: str
    content_id: str
    title: str
    description: str | None = None
    amount_min: float | None = None
    amount_max: float | None = None
    currency: str = "EUR"
    deadline: date | None = None
    eligibility: list[Any] = Field(default_factory=list)
    categories: list[Any] = Field(default_factory=list)
    contact_info: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float
    ai_metadata: dict[str, Any] = Field(default_factory=dict)
    source_url: str | None = None
    source_title: str | None = None
    created_at: datetime | None = None


class JobStatistics(BaseModel):
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    total_pages: int = 0
    total_documents: int = 0
    total_records: int = 0
    average_processing_time_ms: int = 0
