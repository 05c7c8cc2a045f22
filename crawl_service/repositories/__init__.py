"""Crawl result repositories."""

from .base import CrawlRepository
from .duckdb_repository import DuckDBCrawlRepository
from .memory_repository import InMemoryCrawlRepository

__all__ = [
    "CrawlRepository",
    "DuckDBCrawlRepository",
    "InMemoryCrawlRepository",
]
