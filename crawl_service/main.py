"""
FastAPI application for the URL crawl queue service.

Accepts URLs for background analysis, exposes stored results and queue
state, and runs the worker pool for the lifetime of the application.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from crawl_service.api.v1.routers import crawls, health
from crawl_service.config import Settings, configure_structlog, settings
from crawl_service.core.queue import (
    QueueService,
    initialize_queue_service,
    reset_queue_service,
)
from crawl_service.crawler import HTMLCrawler
from crawl_service.repositories.base import CrawlRepository
from crawl_service.repositories.factory import RepositoryFactory

configure_structlog()
logger = structlog.get_logger(__name__)


def build_crawler(config: Settings) -> HTMLCrawler:
    return HTMLCrawler(
        timeout=config.crawler_timeout_seconds,
        user_agent=config.crawler_user_agent,
        max_redirects=config.crawler_max_redirects,
        max_links_to_check=config.crawler_max_links_check,
        max_content_size=config.crawler_max_content_size,
    )


def create_app(
    queue_service: QueueService | None = None,
    repository: CrawlRepository | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        queue_service: Pre-built queue service; its repository should be
            passed as ``repository`` too so routes and workers share storage
        repository: Pre-built repository, otherwise chosen from settings

    The lifespan starts the worker pool on startup and stops it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "URL Crawler API starting up",
            version=settings.api_version,
            environment=settings.get_environment_display(),
            debug=settings.debug,
        )

        repo = repository or RepositoryFactory.create_repository(settings)
        service = queue_service or initialize_queue_service(
            settings.queue_config(), build_crawler(settings), repo
        )
        app.state.repository = repo
        app.state.queue_service = service

        await service.start()
        logger.info("API routes registered", endpoints=len(app.routes))

        try:
            yield
        finally:
            logger.info("URL Crawler API shutting down")
            await service.stop()
            if queue_service is None:
                reset_queue_service()

    app = FastAPI(
        title=settings.api_title,
        description="Queue URLs for background HTML analysis and browse the stored results.",
        version=settings.api_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production() else None,
        redoc_url="/redoc" if not settings.is_production() else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(crawls.router)

    @app.get("/", tags=["Root"])
    async def root():
        """Basic service information. Use `/api/v1/health` for detailed checks."""
        return {
            "service": settings.api_title,
            "version": settings.api_version,
            "environment": settings.get_environment_display(),
            "health": "/api/v1/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crawl_service.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,  # Use our structured logging
    )
