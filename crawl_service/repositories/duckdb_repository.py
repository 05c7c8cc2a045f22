"""
DuckDB implementation of the crawl repository.

Provides persistent storage using DuckDB with a pragmatic approach:
- Connection per operation, serialised by one lock
- Blocking driver calls run in the default executor
- Driver errors surface as StorageError
"""

import asyncio
from datetime import datetime
import json
from pathlib import Path
from typing import Any, Callable, TypeVar, cast

import duckdb
import structlog

from crawl_service.core.errors import ResultNotFoundError, StorageError
from crawl_service.core.models import (
    BrokenLink,
    CrawlFilters,
    CrawlResult,
    CrawlStats,
    CrawlStatus,
    HeadingCounts,
    PaginatedCrawlResults,
)
from crawl_service.repositories.base import CrawlRepository

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RESULT_COLUMNS = (
    "id, url, title, html_version, internal_links_count, external_links_count, "
    "inaccessible_links_count, has_login_form, heading_counts, broken_links, "
    "external_links, status, error_message, created_at, updated_at"
)


class DuckDBCrawlRepository(CrawlRepository):
    """DuckDB implementation of CrawlRepository."""

    def __init__(self, db_path: str = "data/crawls.duckdb"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Single lock for all database operations to prevent concurrency issues
        self._db_lock = asyncio.Lock()
        self._initialized = False
        logger.info("DuckDB crawl repository initialized", db_path=str(self.db_path))

    async def _run(self, operation: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        """Run a blocking operation on a fresh connection under the lock."""
        async with self._db_lock:

            def _call() -> T:
                with duckdb.connect(str(self.db_path)) as conn:
                    return operation(conn)

            loop = asyncio.get_running_loop()
            try:
                return await loop.run_in_executor(None, _call)
            except duckdb.Error as e:
                raise StorageError(f"duckdb operation failed: {e}") from e

    async def _execute(self, query: str, params: tuple = ()) -> None:
        def _operation(conn: duckdb.DuckDBPyConnection) -> None:
            conn.execute(query, params)

        await self._run(_operation)

    async def _fetch_one(self, query: str, params: tuple = ()) -> tuple | None:
        return await self._run(lambda conn: conn.execute(query, params).fetchone())

    async def _fetch_all(self, query: str, params: tuple = ()) -> list[tuple]:
        return await self._run(lambda conn: conn.execute(query, params).fetchall())

    async def _init_db(self) -> None:
        """Initialize database schema once per repository instance."""
        if self._initialized:
            return

        await self._execute("""
            CREATE TABLE IF NOT EXISTS crawl_results (
                id VARCHAR PRIMARY KEY,
                url VARCHAR NOT NULL,
                title VARCHAR DEFAULT '',
                html_version VARCHAR DEFAULT '',
                internal_links_count INTEGER DEFAULT 0,
                external_links_count INTEGER DEFAULT 0,
                inaccessible_links_count INTEGER DEFAULT 0,
                has_login_form BOOLEAN DEFAULT FALSE,
                heading_counts VARCHAR,
                broken_links VARCHAR,
                external_links VARCHAR,
                status VARCHAR NOT NULL DEFAULT 'queued',
                error_message VARCHAR,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        # No secondary indexes: DuckDB refuses ON CONFLICT updates of indexed columns.
        self._initialized = True

    async def save_result(self, result: CrawlResult) -> None:
        await self._init_db()

        await self._execute(
            f"""
            INSERT INTO crawl_results ({RESULT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                title = excluded.title,
                html_version = excluded.html_version,
                internal_links_count = excluded.internal_links_count,
                external_links_count = excluded.external_links_count,
                inaccessible_links_count = excluded.inaccessible_links_count,
                has_login_form = excluded.has_login_form,
                heading_counts = excluded.heading_counts,
                broken_links = excluded.broken_links,
                external_links = excluded.external_links,
                status = excluded.status,
                error_message = excluded.error_message,
                updated_at = excluded.updated_at
        """,
            (
                result.id,
                result.url,
                result.title,
                result.html_version,
                result.internal_links_count,
                result.external_links_count,
                result.inaccessible_links_count,
                result.has_login_form,
                json.dumps(result.heading_counts.to_dict()),
                json.dumps([link.to_dict() for link in result.broken_links]),
                json.dumps(result.external_links),
                result.status.value,
                result.error_message,
                result.created_at,
                result.updated_at,
            ),
        )

        logger.debug("Crawl result saved", crawl_id=result.id, status=result.status.value)

    async def update_status(
        self, crawl_id: str, status: CrawlStatus, error_message: str | None = None
    ) -> None:
        await self._init_db()

        await self._execute(
            "UPDATE crawl_results SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
            (status.value, error_message, datetime.now(), crawl_id),
        )

        logger.debug("Crawl status updated", crawl_id=crawl_id, status=status.value)

    async def get_result(self, crawl_id: str) -> CrawlResult:
        await self._init_db()

        row = await self._fetch_one(
            f"SELECT {RESULT_COLUMNS} FROM crawl_results WHERE id = ?", (crawl_id,)
        )
        if row is None:
            raise ResultNotFoundError(f"crawl result {crawl_id} not found")
        return self._row_to_result(row)

    async def list_results(self, filters: CrawlFilters) -> PaginatedCrawlResults:
        filters.validate()
        await self._init_db()

        conditions: list[str] = []
        params: list[Any] = []

        if filters.status is not None:
            conditions.append("status = ?")
            params.append(filters.status.value)

        if filters.search:
            conditions.append("(url ILIKE ? OR title ILIKE ?)")
            term = f"%{filters.search}%"
            params.extend([term, term])

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        count_row = await self._fetch_one(
            f"SELECT COUNT(*) FROM crawl_results {where_clause}", tuple(params)
        )
        total = cast(int, count_row[0]) if count_row else 0

        # sort_by and sort_dir are whitelisted by CrawlFilters.validate
        rows = await self._fetch_all(
            f"""
            SELECT {RESULT_COLUMNS} FROM crawl_results
            {where_clause}
            ORDER BY {filters.sort_by} {filters.sort_dir}
            LIMIT ? OFFSET ?
        """,
            (*params, filters.page_size, filters.offset),
        )

        return PaginatedCrawlResults(
            results=[self._row_to_result(row) for row in rows],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
        )

    async def delete_results(self, crawl_ids: list[str]) -> int:
        if not crawl_ids:
            return 0
        await self._init_db()

        placeholders = ", ".join("?" for _ in crawl_ids)
        ids = tuple(crawl_ids)

        def _delete(conn: duckdb.DuckDBPyConnection) -> int:
            (count,) = conn.execute(
                f"SELECT COUNT(*) FROM crawl_results WHERE id IN ({placeholders})", ids
            ).fetchone()
            conn.execute(f"DELETE FROM crawl_results WHERE id IN ({placeholders})", ids)
            return int(count)

        deleted = await self._run(_delete)
        if deleted:
            logger.info("Crawl results deleted", count=deleted)
        return deleted

    async def update_status_bulk(self, crawl_ids: list[str], status: CrawlStatus) -> int:
        if not crawl_ids:
            return 0
        await self._init_db()

        placeholders = ", ".join("?" for _ in crawl_ids)
        ids = tuple(crawl_ids)

        def _update(conn: duckdb.DuckDBPyConnection) -> int:
            (count,) = conn.execute(
                f"SELECT COUNT(*) FROM crawl_results WHERE id IN ({placeholders})", ids
            ).fetchone()
            conn.execute(
                f"""
                UPDATE crawl_results
                SET status = ?, updated_at = ?, error_message = NULL
                WHERE id IN ({placeholders})
            """,
                (status.value, datetime.now(), *ids),
            )
            return int(count)

        return await self._run(_update)

    async def get_stats(self) -> CrawlStats:
        await self._init_db()

        row = await self._fetch_one("""
            SELECT
                COUNT(*),
                COUNT(*) FILTER (WHERE status = 'queued'),
                COUNT(*) FILTER (WHERE status = 'running'),
                COUNT(*) FILTER (WHERE status = 'completed'),
                COUNT(*) FILTER (WHERE status = 'error')
            FROM crawl_results
        """)
        if row is None:
            return CrawlStats()
        return CrawlStats(
            total=row[0], queued=row[1], running=row[2], completed=row[3], error=row[4]
        )

    async def health_check(self) -> dict[str, Any]:
        """Check repository health."""
        try:
            await self._init_db()
            stats = await self.get_stats()

            version_row = await self._fetch_one("SELECT version()")
            version = cast(str, version_row[0]) if version_row else "unknown"

            return {
                "database": "healthy",
                "type": "duckdb",
                "version": version,
                "path": str(self.db_path),
                "result_count": stats.total,
            }
        except StorageError as e:
            logger.error("Repository health check failed", error=str(e))
            return {"database": "unhealthy", "error": str(e)}

    def _row_to_result(self, row: tuple) -> CrawlResult:
        """Convert DuckDB row to CrawlResult."""
        return CrawlResult(
            id=row[0],
            url=row[1],
            title=row[2] or "",
            html_version=row[3] or "",
            internal_links_count=row[4] or 0,
            external_links_count=row[5] or 0,
            inaccessible_links_count=row[6] or 0,
            has_login_form=bool(row[7]),
            heading_counts=HeadingCounts.from_dict(json.loads(row[8]) if row[8] else None),
            broken_links=[BrokenLink(**link) for link in json.loads(row[9] or "[]")],
            external_links=json.loads(row[10] or "[]"),
            status=CrawlStatus(row[11]),
            error_message=row[12],
            created_at=row[13],
            updated_at=row[14],
        )
