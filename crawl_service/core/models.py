"""Crawl domain models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class CrawlStatus(str, Enum):
    """Crawl execution status."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


SORTABLE_COLUMNS = frozenset(
    {
        "created_at",
        "updated_at",
        "url",
        "title",
        "status",
        "internal_links_count",
        "external_links_count",
        "inaccessible_links_count",
    }
)


@dataclass
class HeadingCounts:
    """Count of each heading level found on a page."""

    h1: int = 0
    h2: int = 0
    h3: int = 0
    h4: int = 0
    h5: int = 0
    h6: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "h1": self.h1,
            "h2": self.h2,
            "h3": self.h3,
            "h4": self.h4,
            "h5": self.h5,
            "h6": self.h6,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "HeadingCounts":
        data = data or {}
        return cls(**{level: int(data.get(level, 0)) for level in cls().to_dict()})


@dataclass
class BrokenLink:
    """A link that answered with an error status or could not be reached."""

    url: str
    status_code: int
    status_text: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "status_code": self.status_code,
            "status_text": self.status_text,
        }


@dataclass
class CrawlResult:
    """
    Persisted analysis of a single URL.

    The record is created as soon as a URL is submitted and is rewritten
    by the worker that processes it. It outlives the in-memory task.
    """

    id: str
    url: str
    status: CrawlStatus
    created_at: datetime
    updated_at: datetime
    title: str = ""
    html_version: str = ""
    internal_links_count: int = 0
    external_links_count: int = 0
    inaccessible_links_count: int = 0
    has_login_form: bool = False
    heading_counts: HeadingCounts = field(default_factory=HeadingCounts)
    broken_links: list[BrokenLink] = field(default_factory=list)
    external_links: list[str] = field(default_factory=list)
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "html_version": self.html_version,
            "internal_links_count": self.internal_links_count,
            "external_links_count": self.external_links_count,
            "inaccessible_links_count": self.inaccessible_links_count,
            "has_login_form": self.has_login_form,
            "heading_counts": self.heading_counts.to_dict(),
            "broken_links": [link.to_dict() for link in self.broken_links],
            "external_links": list(self.external_links),
            "status": self.status.value,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class CrawlTask:
    """An admitted unit of work, tracked in memory until a worker finishes it."""

    id: str
    url: str
    created_at: datetime
    status: CrawlStatus = CrawlStatus.QUEUED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "status": self.status.value,
            "queued_at": self.created_at.isoformat(),
        }


@dataclass
class CrawlFilters:
    """Filters, sorting and pagination for listing crawl results."""

    status: CrawlStatus | None = None
    search: str = ""
    page: int = 1
    page_size: int = 10
    sort_by: str = "updated_at"
    sort_dir: str = "desc"

    def validate(self) -> None:
        """
        Normalise out-of-range values in place.

        Raises:
            ValueError: If the status filter is not a known status
        """
        if self.page < 1:
            self.page = 1

        if self.page_size < 1 or self.page_size > 100:
            self.page_size = 10

        if self.sort_by not in SORTABLE_COLUMNS:
            self.sort_by = "updated_at"

        if self.sort_dir not in ("asc", "desc"):
            self.sort_dir = "desc"

        if self.status is not None and not isinstance(self.status, CrawlStatus):
            try:
                self.status = CrawlStatus(self.status)
            except ValueError as err:
                raise ValueError("invalid status filter") from err

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class PaginatedCrawlResults:
    results: list[CrawlResult]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


@dataclass
class CrawlStats:
    """Stored crawl results counted by status."""

    total: int = 0
    queued: int = 0
    running: int = 0
    completed: int = 0
    error: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "queued": self.queued,
            "running": self.running,
            "completed": self.completed,
            "error": self.error,
        }


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time snapshot of the queue; not consistent with concurrent admissions."""

    queue_length: int
    active_tasks: int
    workers: int
    running: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue_length": self.queue_length,
            "active_tasks": self.active_tasks,
            "workers": self.workers,
            "running": self.running,
        }
