"""
Repository factory for dependency injection and configuration.

Supports DuckDB for persistent deployments and an in-memory store for
development and tests.
"""

import structlog

from crawl_service.config import Settings
from crawl_service.repositories.base import CrawlRepository
from crawl_service.repositories.duckdb_repository import DuckDBCrawlRepository
from crawl_service.repositories.memory_repository import InMemoryCrawlRepository

logger = structlog.get_logger(__name__)


class RepositoryFactory:
    """Factory for creating repository instances."""

    @staticmethod
    def create_repository(settings: Settings) -> CrawlRepository:
        """
        Create a repository instance based on configuration.

        Args:
            settings: Application settings (REPOSITORY_TYPE, DUCKDB_PATH)

        Returns:
            The configured CrawlRepository
        """
        repository_type = settings.repository_type.lower()

        if repository_type == "duckdb":
            return RepositoryFactory._create_duckdb_repository(settings)
        elif repository_type == "memory":
            logger.info("Creating in-memory repository")
            return InMemoryCrawlRepository()
        else:
            logger.warning(
                "Unknown repository type, falling back to DuckDB",
                repository_type=repository_type,
            )
            return RepositoryFactory._create_duckdb_repository(settings)

    @staticmethod
    def _create_duckdb_repository(settings: Settings) -> CrawlRepository:
        logger.info("Creating DuckDB repository", db_path=settings.duckdb_path)
        return DuckDBCrawlRepository(settings.duckdb_path)
