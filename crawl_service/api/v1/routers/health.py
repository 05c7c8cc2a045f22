"""Health check endpoints."""

from fastapi import APIRouter, Depends

from crawl_service.api.v1.dependencies import get_queue, get_repository
from crawl_service.api.v1.schemas import HealthStatus, QueueStatsSchema
from crawl_service.config import settings
from crawl_service.core.queue import QueueService
from crawl_service.repositories.base import CrawlRepository

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthStatus)
async def health_check(
    queue: QueueService = Depends(get_queue),
    repository: CrawlRepository = Depends(get_repository),
) -> HealthStatus:
    """Health check endpoint for load balancers and monitoring."""
    queue_stats = await queue.get_stats()
    repository_health = await repository.health_check()

    dependencies = {
        "database": repository_health.get("database", "unknown"),
        "queue": "running" if queue_stats.running else "stopped",
    }

    overall_status = (
        "healthy"
        if dependencies["database"] == "healthy" and queue_stats.running
        else "degraded"
    )

    return HealthStatus(
        status=overall_status,
        service="url-crawler-api",
        version=settings.api_version,
        queue=QueueStatsSchema(**queue_stats.to_dict()),
        dependencies=dependencies,
    )
