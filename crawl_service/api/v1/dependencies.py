"""Request-scoped access to the services wired up by the application lifespan."""

from fastapi import Request

from crawl_service.core.queue import QueueService
from crawl_service.repositories.base import CrawlRepository


def get_queue(request: Request) -> QueueService:
    return request.app.state.queue_service


def get_repository(request: Request) -> CrawlRepository:
    return request.app.state.repository
