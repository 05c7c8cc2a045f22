"""
In-memory crawl repository.

Suitable for development and tests where results do not need to survive
a restart. Stored results are copied on the way in and out so callers
never share mutable state with the store.
"""

import asyncio
import copy
from datetime import datetime
from typing import Any

import structlog

from crawl_service.core.errors import ResultNotFoundError
from crawl_service.core.models import (
    CrawlFilters,
    CrawlResult,
    CrawlStats,
    CrawlStatus,
    PaginatedCrawlResults,
)
from crawl_service.repositories.base import CrawlRepository

logger = structlog.get_logger(__name__)


class InMemoryCrawlRepository(CrawlRepository):
    """Thread-safe in-memory implementation of CrawlRepository."""

    def __init__(self) -> None:
        self._results: dict[str, CrawlResult] = {}
        self._lock = asyncio.Lock()

        logger.info("In-memory crawl repository initialized")

    async def save_result(self, result: CrawlResult) -> None:
        async with self._lock:
            stored = copy.deepcopy(result)
            existing = self._results.get(result.id)
            if existing is not None:
                stored.url = existing.url
                stored.created_at = existing.created_at
            self._results[result.id] = stored

        logger.debug("Crawl result saved", crawl_id=result.id, status=result.status.value)

    async def update_status(
        self, crawl_id: str, status: CrawlStatus, error_message: str | None = None
    ) -> None:
        async with self._lock:
            existing = self._results.get(crawl_id)
            if existing is None:
                # Same as an UPDATE that matches no rows.
                return
            existing.status = status
            existing.error_message = error_message
            existing.updated_at = datetime.now()

        logger.debug("Crawl status updated", crawl_id=crawl_id, status=status.value)

    async def get_result(self, crawl_id: str) -> CrawlResult:
        async with self._lock:
            existing = self._results.get(crawl_id)
            if existing is None:
                raise ResultNotFoundError(f"crawl result {crawl_id} not found")
            return copy.deepcopy(existing)

    async def list_results(self, filters: CrawlFilters) -> PaginatedCrawlResults:
        filters.validate()

        async with self._lock:
            results = list(self._results.values())

        if filters.status is not None:
            results = [r for r in results if r.status == filters.status]

        if filters.search:
            needle = filters.search.lower()
            results = [
                r for r in results if needle in r.url.lower() or needle in r.title.lower()
            ]

        def sort_key(result: CrawlResult) -> Any:
            value = getattr(result, filters.sort_by)
            return value.value if isinstance(value, CrawlStatus) else value

        results.sort(key=sort_key, reverse=filters.sort_dir == "desc")

        page = results[filters.offset : filters.offset + filters.page_size]
        return PaginatedCrawlResults(
            results=[copy.deepcopy(r) for r in page],
            total=len(results),
            page=filters.page,
            page_size=filters.page_size,
        )

    async def delete_results(self, crawl_ids: list[str]) -> int:
        async with self._lock:
            deleted = 0
            for crawl_id in crawl_ids:
                if self._results.pop(crawl_id, None) is not None:
                    deleted += 1

        if deleted:
            logger.info("Crawl results deleted", count=deleted)
        return deleted

    async def update_status_bulk(self, crawl_ids: list[str], status: CrawlStatus) -> int:
        now = datetime.now()
        updated = 0
        async with self._lock:
            for crawl_id in crawl_ids:
                existing = self._results.get(crawl_id)
                if existing is None:
                    continue
                existing.status = status
                existing.error_message = None
                existing.updated_at = now
                updated += 1
        return updated

    async def get_stats(self) -> CrawlStats:
        async with self._lock:
            stats = CrawlStats(total=len(self._results))
            for result in self._results.values():
                name = result.status.value
                setattr(stats, name, getattr(stats, name) + 1)
        return stats

    async def health_check(self) -> dict[str, Any]:
        async with self._lock:
            count = len(self._results)
        return {"database": "healthy", "type": "memory", "result_count": count}
