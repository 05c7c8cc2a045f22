"""Crawl submission, lookup and bulk management endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
import structlog

from crawl_service.api.v1.dependencies import get_queue, get_repository
from crawl_service.api.v1.schemas import (
    CrawlCreatedResponse,
    CrawlIdsRequest,
    CrawlRequest,
    CrawlResultResponse,
    CrawlStatsResponse,
    CrawlStatsSchema,
    CrawlStatusResponse,
    DeleteResponse,
    PaginatedCrawlResponse,
    QueueStatsSchema,
    RerunResponse,
)
from crawl_service.core.errors import (
    CrawlServiceError,
    InvalidURLError,
    QueueFullError,
    QueueStoppedError,
    ResultNotFoundError,
    StorageError,
)
from crawl_service.core.models import CrawlFilters, CrawlResult
from crawl_service.core.queue import QueueService
from crawl_service.repositories.base import CrawlRepository

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["crawl"])


def to_response(result: CrawlResult) -> CrawlResultResponse:
    return CrawlResultResponse(**result.to_dict())


async def get_result_or_404(repository: CrawlRepository, crawl_id: str) -> CrawlResult:
    """Get a stored result by id or raise 404."""
    try:
        return await repository.get_result(crawl_id)
    except ResultNotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Crawl result not found"
        ) from err
    except StorageError as err:
        logger.error("Failed to load crawl result", crawl_id=crawl_id, error=str(err))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve crawl result",
        ) from err


@router.post(
    "/crawl", response_model=CrawlCreatedResponse, status_code=status.HTTP_201_CREATED
)
async def create_crawl(
    body: CrawlRequest, queue: QueueService = Depends(get_queue)
) -> CrawlCreatedResponse:
    """
    Submit a URL for background analysis.

    - **url**: Absolute http(s) URL
    - **Returns**: The queued crawl id for status polling
    """
    try:
        task = await queue.enqueue_url(body.url)
    except InvalidURLError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    except QueueFullError as err:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Queue is full, please try again later",
        ) from err
    except QueueStoppedError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue is stopped, please try again later",
        ) from err
    except StorageError as err:
        logger.error("Failed to create crawl request", url=body.url, error=str(err))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create crawl request",
        ) from err

    return CrawlCreatedResponse(
        id=task.id,
        url=task.url,
        status=task.status,
        message="Crawl request queued successfully",
    )


@router.get("/crawl", response_model=PaginatedCrawlResponse)
async def list_crawls(
    status_filter: str | None = Query(None, alias="status"),
    search: str = "",
    page: int = 1,
    page_size: int = 10,
    sort_by: str = "updated_at",
    sort_dir: str = "desc",
    repository: CrawlRepository = Depends(get_repository),
) -> PaginatedCrawlResponse:
    """List stored crawl results with filtering, sorting and pagination."""
    filters = CrawlFilters(
        status=status_filter or None,  # type: ignore[arg-type]
        search=search,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_dir=sort_dir.lower(),
    )

    try:
        paginated = await repository.list_results(filters)
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    except StorageError as err:
        logger.error("Failed to list crawl results", error=str(err))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve crawl results",
        ) from err

    return PaginatedCrawlResponse(
        results=[to_response(result) for result in paginated.results],
        total=paginated.total,
        page=paginated.page,
        page_size=paginated.page_size,
        total_pages=paginated.total_pages,
    )


# Declared before /crawl/{crawl_id} so "stats" is not taken for an id.
@router.get("/crawl/stats", response_model=CrawlStatsResponse)
async def get_crawl_stats(
    queue: QueueService = Depends(get_queue),
    repository: CrawlRepository = Depends(get_repository),
) -> CrawlStatsResponse:
    """Stored results counted by status, plus a snapshot of the queue."""
    try:
        stored = await repository.get_stats()
    except StorageError as err:
        logger.error("Failed to load crawl stats", error=str(err))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve crawl statistics",
        ) from err

    queue_stats = await queue.get_stats()
    return CrawlStatsResponse(
        database=CrawlStatsSchema(**stored.to_dict()),
        queue=QueueStatsSchema(**queue_stats.to_dict()),
    )


@router.get("/crawl/{crawl_id}", response_model=CrawlResultResponse)
async def get_crawl(
    crawl_id: str, repository: CrawlRepository = Depends(get_repository)
) -> CrawlResultResponse:
    result = await get_result_or_404(repository, crawl_id)
    return to_response(result)


@router.get(
    "/crawl/{crawl_id}/status",
    response_model=CrawlStatusResponse,
    response_model_exclude_none=True,
)
async def get_crawl_status(
    crawl_id: str,
    queue: QueueService = Depends(get_queue),
    repository: CrawlRepository = Depends(get_repository),
) -> CrawlStatusResponse:
    """
    Current status of a crawl.

    In-flight tasks are answered from the queue without touching storage.
    """
    task = await queue.get_active_task(crawl_id)
    if task is not None:
        return CrawlStatusResponse(
            id=task.id, url=task.url, status=task.status, queued_at=task.created_at
        )

    result = await get_result_or_404(repository, crawl_id)
    return CrawlStatusResponse(
        id=result.id,
        url=result.url,
        status=result.status,
        created_at=result.created_at,
        updated_at=result.updated_at,
        error_message=result.error_message,
    )


@router.delete("/crawl", response_model=DeleteResponse)
async def delete_crawls(
    body: CrawlIdsRequest, repository: CrawlRepository = Depends(get_repository)
) -> DeleteResponse:
    try:
        deleted = await repository.delete_results(body.ids)
    except StorageError as err:
        logger.error("Failed to delete crawl results", error=str(err))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete crawl results",
        ) from err

    if deleted == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No crawl results found for the provided IDs",
        )

    return DeleteResponse(message="Crawl results deleted successfully", deleted_count=deleted)


@router.post("/crawl/rerun", response_model=RerunResponse)
async def rerun_crawls(
    body: CrawlIdsRequest,
    queue: QueueService = Depends(get_queue),
):
    """
    Re-queue stored crawls under their existing ids.

    Each admitted id is marked queued by the queue service; an id that is
    still in flight is reported as an error and its record left untouched.
    Answers 206 with per-id errors when only some ids could be re-queued.
    """
    errors: list[str] = []
    for crawl_id in body.ids:
        try:
            await queue.requeue_task(crawl_id)
        except CrawlServiceError as err:
            logger.warning("Failed to requeue crawl", crawl_id=crawl_id, error=str(err))
            errors.append(f"Failed to requeue {crawl_id}: {err}")

    response = RerunResponse(
        message="Rerun operation completed",
        success_count=len(body.ids) - len(errors),
        total_requested=len(body.ids),
        errors=errors,
    )

    if errors:
        return JSONResponse(
            status_code=status.HTTP_206_PARTIAL_CONTENT, content=response.model_dump()
        )
    return response
