"""Shared fixtures for the crawl service tests."""

import pytest
import pytest_asyncio

from crawl_service.core.queue import QueueConfig, QueueService
from crawl_service.repositories.memory_repository import InMemoryCrawlRepository
from crawl_service.tests.fakes import FakeCrawler


@pytest.fixture
def repository():
    """Fresh in-memory repository for each test."""
    return InMemoryCrawlRepository()


@pytest.fixture
def crawler():
    """Crawler that succeeds immediately."""
    return FakeCrawler()


@pytest_asyncio.fixture
async def make_service(repository):
    """
    Build queue services that are stopped again after the test.

    Defaults to one worker, a buffer of ten and no retry delay.
    """
    services: list[QueueService] = []

    def _make(crawler, repo=None, **overrides) -> QueueService:
        options = {"workers": 1, "buffer_size": 10, "retry_delay": 0.0, **overrides}
        service = QueueService(QueueConfig(**options), crawler, repo or repository)
        services.append(service)
        return service

    yield _make

    for service in services:
        await service.stop()
