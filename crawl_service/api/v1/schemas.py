"""Pydantic schemas for API v1 - Simple DTOs only."""

from datetime import datetime

from pydantic import BaseModel, Field

from crawl_service.core.models import CrawlStatus


class CrawlRequest(BaseModel):
    """Crawl submission request."""

    url: str = Field(description="Absolute http(s) URL to analyse")


class CrawlIdsRequest(BaseModel):
    """Bulk operation over stored crawl results."""

    ids: list[str] = Field(min_length=1)


class CrawlCreatedResponse(BaseModel):
    """Crawl submission response."""

    id: str
    url: str
    status: CrawlStatus
    message: str


class HeadingCountsSchema(BaseModel):
    h1: int = 0
    h2: int = 0
    h3: int = 0
    h4: int = 0
    h5: int = 0
    h6: int = 0


class BrokenLinkSchema(BaseModel):
    url: str
    status_code: int
    status_text: str


class CrawlResultResponse(BaseModel):
    """Stored crawl result."""

    id: str
    url: str
    title: str
    html_version: str
    internal_links_count: int
    external_links_count: int
    inaccessible_links_count: int
    has_login_form: bool
    heading_counts: HeadingCountsSchema
    broken_links: list[BrokenLinkSchema]
    external_links: list[str]
    status: CrawlStatus
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class PaginatedCrawlResponse(BaseModel):
    results: list[CrawlResultResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class CrawlStatusResponse(BaseModel):
    """
    Current status of a crawl.

    In-flight tasks report ``queued_at``; finished or stored-only results
    report their stored timestamps and error message instead.
    """

    id: str
    url: str
    status: CrawlStatus
    queued_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    error_message: str | None = None


class DeleteResponse(BaseModel):
    message: str
    deleted_count: int


class RerunResponse(BaseModel):
    message: str
    success_count: int
    total_requested: int
    errors: list[str] = []


class QueueStatsSchema(BaseModel):
    queue_length: int
    active_tasks: int
    workers: int
    running: bool


class CrawlStatsSchema(BaseModel):
    total: int
    queued: int
    running: int
    completed: int
    error: int


class CrawlStatsResponse(BaseModel):
    database: CrawlStatsSchema
    queue: QueueStatsSchema
    timestamp: datetime = Field(default_factory=datetime.now)


class HealthStatus(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    timestamp: datetime = Field(default_factory=datetime.now)
    queue: QueueStatsSchema
    dependencies: dict[str, str] = {}
