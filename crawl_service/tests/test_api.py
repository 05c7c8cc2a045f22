"""
Tests for the HTTP API.

Most tests run the real queue service and in-memory repository behind the
application lifespan; error mappings use a mocked queue service.
"""

import asyncio
from datetime import datetime
import time
from unittest.mock import AsyncMock, Mock

from fastapi import status
from fastapi.testclient import TestClient
import pytest

from crawl_service.core.errors import (
    InvalidURLError,
    QueueFullError,
    QueueStoppedError,
    StorageError,
)
from crawl_service.core.models import CrawlResult, CrawlStatus, CrawlTask, QueueStats
from crawl_service.core.queue import QueueConfig, QueueService
from crawl_service.main import create_app
from crawl_service.repositories.memory_repository import InMemoryCrawlRepository
from crawl_service.tests.fakes import ALWAYS, FakeCrawler


def wait_until_status(client: TestClient, crawl_id: str, expected: str, timeout: float = 3.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/v1/crawl/{crawl_id}").json()
        if body["status"] == expected:
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"crawl {crawl_id} stuck in {body['status']}")
        time.sleep(0.01)


@pytest.fixture
def repository():
    return InMemoryCrawlRepository()


@pytest.fixture
def client(repository):
    """Test client running the real queue with an instant crawler."""
    service = QueueService(QueueConfig(workers=2, buffer_size=10), FakeCrawler(), repository)
    with TestClient(create_app(queue_service=service, repository=repository)) as test_client:
        yield test_client


@pytest.fixture
def mock_queue():
    """Create a mock queue service for testing error mappings."""
    queue = Mock(spec=QueueService)
    queue.start = AsyncMock()
    queue.stop = AsyncMock()
    queue.enqueue_url = AsyncMock()
    queue.requeue_task = AsyncMock()
    queue.get_active_task = AsyncMock(return_value=None)
    queue.get_stats = AsyncMock(
        return_value=QueueStats(queue_length=0, active_tasks=0, workers=1, running=True)
    )
    return queue


@pytest.fixture
def mocked_client(mock_queue, repository):
    with TestClient(create_app(queue_service=mock_queue, repository=repository)) as test_client:
        yield test_client


def stored(crawl_id: str, crawl_status: CrawlStatus, **fields) -> CrawlResult:
    now = datetime.now()
    return CrawlResult(
        id=crawl_id,
        url=f"https://example.com/{crawl_id}",
        status=crawl_status,
        created_at=now,
        updated_at=now,
        **fields,
    )


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_check_success(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["status"] == "healthy"
        assert body["queue"]["running"] is True
        assert body["queue"]["workers"] == 2
        assert body["dependencies"]["database"] == "healthy"

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["health"] == "/api/v1/health"


class TestCreateCrawl:
    """Test crawl submission."""

    def test_create_and_complete(self, client):
        response = client.post("/api/v1/crawl", json={"url": "https://example.com"})

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["status"] == "queued"
        assert body["url"] == "https://example.com"

        result = wait_until_status(client, body["id"], "completed")
        assert result["title"] == "Title of https://example.com"
        assert result["id"] == body["id"]

    def test_invalid_url(self, client):
        response = client.post("/api/v1/crawl", json={"url": "not-a-url"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "URL must start with http:// or https://"

    def test_missing_url_field(self, client):
        response = client.post("/api/v1/crawl", json={})

        assert response.status_code == 422

    @pytest.mark.parametrize(
        "error, expected_status",
        [
            (InvalidURLError("URL cannot be empty"), status.HTTP_400_BAD_REQUEST),
            (QueueFullError("full"), status.HTTP_429_TOO_MANY_REQUESTS),
            (QueueStoppedError("stopped"), status.HTTP_503_SERVICE_UNAVAILABLE),
            (StorageError("disk full"), status.HTTP_500_INTERNAL_SERVER_ERROR),
        ],
    )
    def test_error_mapping(self, mocked_client, mock_queue, error, expected_status):
        mock_queue.enqueue_url.side_effect = error

        response = mocked_client.post("/api/v1/crawl", json={"url": "https://example.com"})

        assert response.status_code == expected_status


class TestReadCrawls:
    """Test listing, lookup, status and stats endpoints."""

    def test_get_missing_crawl(self, client):
        response = client.get("/api/v1/crawl/missing")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_list_with_filters(self, client):
        ids = [
            client.post("/api/v1/crawl", json={"url": f"https://example.com/{i}"}).json()["id"]
            for i in range(3)
        ]
        for crawl_id in ids:
            wait_until_status(client, crawl_id, "completed")

        response = client.get(
            "/api/v1/crawl",
            params={"status": "completed", "page_size": 2, "sort_by": "url", "sort_dir": "asc"},
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["total"] == 3
        assert body["total_pages"] == 2
        assert [r["url"] for r in body["results"]] == [
            "https://example.com/0",
            "https://example.com/1",
        ]

    def test_list_search(self, client):
        crawl_id = client.post("/api/v1/crawl", json={"url": "https://needle.example"}).json()["id"]
        client.post("/api/v1/crawl", json={"url": "https://haystack.example"})
        wait_until_status(client, crawl_id, "completed")

        body = client.get("/api/v1/crawl", params={"search": "needle"}).json()

        assert [r["id"] for r in body["results"]] == [crawl_id]

    def test_list_invalid_status(self, client):
        response = client.get("/api/v1/crawl", params={"status": "finished"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "invalid status filter"

    def test_status_of_in_flight_task(self, mocked_client, mock_queue):
        mock_queue.get_active_task.return_value = CrawlTask(
            id="abc",
            url="https://example.com",
            created_at=datetime(2024, 5, 1, 12, 0, 0),
            status=CrawlStatus.RUNNING,
        )

        response = mocked_client.get("/api/v1/crawl/abc/status")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["status"] == "running"
        assert body["queued_at"] == "2024-05-01T12:00:00"
        assert "error_message" not in body

    def test_status_falls_back_to_storage(self, mocked_client, repository, mock_queue):
        mocked_client.portal.call(
            repository.save_result, stored("done", CrawlStatus.ERROR, error_message="boom")
        )

        response = mocked_client.get("/api/v1/crawl/done/status")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["status"] == "error"
        assert body["error_message"] == "boom"
        assert "queued_at" not in body
        mock_queue.get_active_task.assert_awaited_with("done")

    def test_status_of_missing_crawl(self, mocked_client):
        response = mocked_client.get("/api/v1/crawl/missing/status")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_stats(self, client):
        crawl_id = client.post("/api/v1/crawl", json={"url": "https://example.com"}).json()["id"]
        wait_until_status(client, crawl_id, "completed")

        response = client.get("/api/v1/crawl/stats")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["database"]["total"] == 1
        assert body["database"]["completed"] == 1
        assert body["queue"]["workers"] == 2


class TestBulkEndpoints:
    """Test delete and rerun."""

    def test_delete(self, client):
        crawl_id = client.post("/api/v1/crawl", json={"url": "https://example.com"}).json()["id"]
        wait_until_status(client, crawl_id, "completed")

        response = client.request("DELETE", "/api/v1/crawl", json={"ids": [crawl_id, "missing"]})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["deleted_count"] == 1
        assert client.get(f"/api/v1/crawl/{crawl_id}").status_code == status.HTTP_404_NOT_FOUND

    def test_delete_nothing_found(self, client):
        response = client.request("DELETE", "/api/v1/crawl", json={"ids": ["missing"]})

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_delete_requires_ids(self, client):
        response = client.request("DELETE", "/api/v1/crawl", json={"ids": []})

        assert response.status_code == 422

    def test_rerun(self, client):
        crawl_id = client.post("/api/v1/crawl", json={"url": "https://example.com"}).json()["id"]
        wait_until_status(client, crawl_id, "completed")

        response = client.post("/api/v1/crawl/rerun", json={"ids": [crawl_id]})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success_count"] == 1
        assert body["errors"] == []
        wait_until_status(client, crawl_id, "completed")

    def test_rerun_partial_failure(self, client):
        crawl_id = client.post("/api/v1/crawl", json={"url": "https://example.com"}).json()["id"]
        wait_until_status(client, crawl_id, "completed")

        response = client.post("/api/v1/crawl/rerun", json={"ids": [crawl_id, "missing"]})

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        body = response.json()
        assert body["success_count"] == 1
        assert body["total_requested"] == 2
        assert len(body["errors"]) == 1
        assert body["errors"][0].startswith("Failed to requeue missing")

    def test_rerun_in_flight_crawl_keeps_running_record(self, repository):
        gate = asyncio.Event()
        service = QueueService(
            QueueConfig(workers=1, buffer_size=5), FakeCrawler(gate=gate), repository
        )
        with TestClient(create_app(queue_service=service, repository=repository)) as client:
            crawl_id = client.post("/api/v1/crawl", json={"url": "https://example.com"}).json()["id"]
            wait_until_status(client, crawl_id, "running")

            try:
                response = client.post("/api/v1/crawl/rerun", json={"ids": [crawl_id]})
                stored_status = client.get(f"/api/v1/crawl/{crawl_id}").json()["status"]
            finally:
                client.portal.call(gate.set)

            wait_until_status(client, crawl_id, "completed")

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        body = response.json()
        assert body["success_count"] == 0
        assert body["errors"][0].startswith(f"Failed to requeue {crawl_id}")
        assert stored_status == "running"


class TestFailedCrawls:
    """Test that crawler failures surface through the API."""

    def test_failed_crawl_reports_error(self, repository):
        service = QueueService(
            QueueConfig(workers=1, buffer_size=5),
            FakeCrawler(failures=ALWAYS, error_message="boom"),
            repository,
        )
        with TestClient(create_app(queue_service=service, repository=repository)) as client:
            crawl_id = client.post("/api/v1/crawl", json={"url": "https://example.com"}).json()["id"]

            result = wait_until_status(client, crawl_id, "error")

        assert result["error_message"] == "boom"
