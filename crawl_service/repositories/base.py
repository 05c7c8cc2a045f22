"""
Abstract repository interface for crawl result persistence.

Defines the contract the queue service and the API depend on, so the
storage backend (in-memory, DuckDB) can be swapped through configuration.
"""

from abc import ABC, abstractmethod
from typing import Any

from crawl_service.core.models import (
    CrawlFilters,
    CrawlResult,
    CrawlStats,
    CrawlStatus,
    PaginatedCrawlResults,
)


class CrawlRepository(ABC):
    """
    Abstract repository for crawl results.

    Implementations must be safe for concurrent use by several workers.
    Failures other than a missing record are raised as StorageError.
    """

    @abstractmethod
    async def save_result(self, result: CrawlResult) -> None:
        """Insert or replace a result, keyed by id."""

    @abstractmethod
    async def update_status(
        self, crawl_id: str, status: CrawlStatus, error_message: str | None = None
    ) -> None:
        """Update only the status and error message of a result."""

    @abstractmethod
    async def get_result(self, crawl_id: str) -> CrawlResult:
        """
        Get a result by id.

        Raises:
            ResultNotFoundError: If no result exists for the id
        """

    @abstractmethod
    async def list_results(self, filters: CrawlFilters) -> PaginatedCrawlResults:
        """List results with filtering, sorting and pagination."""

    @abstractmethod
    async def delete_results(self, crawl_ids: list[str]) -> int:
        """Delete results by id and return how many were removed."""

    @abstractmethod
    async def update_status_bulk(self, crawl_ids: list[str], status: CrawlStatus) -> int:
        """Set the status of several results, clearing their error messages."""

    @abstractmethod
    async def get_stats(self) -> CrawlStats:
        """Count stored results by status."""

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check repository health."""
