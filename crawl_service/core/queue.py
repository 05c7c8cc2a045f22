"""
Bounded crawl queue with a fixed pool of asyncio workers.

Submitted URLs are persisted as ``queued`` results and pushed into a
fixed-capacity buffer without blocking. A full buffer rejects the
submission immediately so callers get backpressure instead of an
unbounded wait. Workers pull tasks, run the crawler, and write the
outcome back through the repository.

Example:
    >>> service = QueueService(QueueConfig(workers=2, buffer_size=10), crawler, repository)
    >>> await service.start()
    >>> task = await service.enqueue_url("https://example.com")
    >>> await service.get_active_task(task.id)
    CrawlTask(id='...', url='https://example.com', ..., status=<CrawlStatus.QUEUED: 'queued'>)
    >>> await service.stop()
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any
import uuid

import structlog
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, stop_when_event_set, wait_fixed

from crawl_service.core.errors import (
    QueueFullError,
    QueueStoppedError,
    TaskAlreadyQueuedError,
)
from crawl_service.core.models import CrawlResult, CrawlStatus, CrawlTask, QueueStats
from crawl_service.crawler.base import Crawler
from crawl_service.repositories.base import CrawlRepository

logger = structlog.get_logger(__name__)

QUEUE_FULL_MESSAGE = "Queue is full"
QUEUE_STOPPED_MESSAGE = "Queue is stopped"
SAVE_FAILED_MESSAGE = "Failed to save crawl result"
DROPPED_ON_STOP_MESSAGE = "Queue stopped before the task was processed"


@dataclass(frozen=True)
class QueueConfig:
    """
    Queue sizing and retry policy, fixed for the lifetime of a service.

    Attributes:
        workers: Number of concurrent worker loops
        buffer_size: Capacity of the admission buffer
        max_retries: Extra crawl attempts after a failure (0 disables retries)
        retry_delay: Seconds to wait between attempts
    """

    workers: int = 3
    buffer_size: int = 100
    max_retries: int = 0
    retry_delay: float = 5.0

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError("worker count must be greater than 0")
        if self.buffer_size < 1:
            raise ValueError("buffer size must be greater than 0")
        if self.max_retries < 0:
            raise ValueError("max retries cannot be negative")
        if self.retry_delay < 0:
            raise ValueError("retry delay cannot be negative")


class QueueService:
    """
    Manages background crawling tasks.

    The in-flight map holds every admitted task that no worker has finished
    yet, whether it is reserved, buffered or being processed. Once buffered,
    a task leaves the map only when a worker finishes it or the shutdown
    drain drops it. The map and the running flag share one
    lock; crawler and repository calls are never made while holding it.
    """

    def __init__(self, config: QueueConfig, crawler: Crawler, repository: CrawlRepository):
        self.config = config
        self._crawler = crawler
        self._repository = repository

        self._queue: asyncio.Queue[CrawlTask] = asyncio.Queue(maxsize=config.buffer_size)
        self._lock = asyncio.Lock()
        # Serialises start/stop so a second stop() also waits for the workers.
        self._lifecycle_lock = asyncio.Lock()
        self._active_tasks: dict[str, CrawlTask] = {}
        self._running = False
        self._closed = False
        self._stop_event = asyncio.Event()
        self._workers: list[asyncio.Task[None]] = []
        self._live_workers = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def live_workers(self) -> int:
        """Number of worker loops that have started and not yet exited."""
        return self._live_workers

    async def start(self) -> None:
        """Start the worker loops. Does nothing if already running."""
        async with self._lifecycle_lock:
            async with self._lock:
                if self._running:
                    return

                if self._closed:
                    # Restart after stop(): reopen admission with a fresh signal.
                    self._stop_event = asyncio.Event()
                    self._closed = False

                self._running = True
                self._workers = [
                    asyncio.create_task(
                        self._worker(worker_id, self._stop_event),
                        name=f"crawl-worker-{worker_id}",
                    )
                    for worker_id in range(self.config.workers)
                ]

        logger.info("Queue service started", workers=self.config.workers)

    async def stop(self) -> None:
        """
        Stop the worker loops and wait for them to exit.

        Admission closes first, then every worker is signalled. A worker busy
        with a task finishes it before exiting. Tasks still buffered once all
        workers are gone are marked as errors in the repository.
        """
        async with self._lifecycle_lock:
            async with self._lock:
                if not self._running:
                    return

                self._running = False
                self._closed = True
                self._stop_event.set()
                workers, self._workers = self._workers, []

            logger.info("Waiting for workers to finish", workers=len(workers))
            outcomes = await asyncio.gather(*workers, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    logger.error("Worker exited with an error", error=repr(outcome))

            dropped = await self._drain_buffer()

        logger.info("Queue service stopped", dropped_tasks=dropped)

    async def enqueue_url(self, url: str) -> CrawlTask:
        """
        Validate, persist and admit a URL for crawling.

        Args:
            url: Target URL

        Returns:
            A snapshot of the admitted ``queued`` task

        Raises:
            InvalidURLError: If the crawler rejects the URL (nothing is stored)
            StorageError: If the initial record cannot be saved (nothing is admitted)
            QueueFullError: If the buffer is at capacity (stored record marked error)
            QueueStoppedError: If the queue has been stopped (stored record marked error)
        """
        self._crawler.validate_url(url)

        now = datetime.now()
        result = CrawlResult(
            id=str(uuid.uuid4()),
            url=url,
            status=CrawlStatus.QUEUED,
            created_at=now,
            updated_at=now,
        )
        await self._repository.save_result(result)

        task = CrawlTask(id=result.id, url=url, created_at=now)
        await self._reserve(task)
        await self._admit(task)

        logger.info("Enqueued crawl task", task_id=task.id, url=url)
        return replace(task)

    async def requeue_task(self, crawl_id: str) -> None:
        """
        Re-admit a stored crawl under its existing id.

        The id is reserved in the in-flight map before the stored record is
        marked ``queued``, so a losing concurrent requeue never writes to it.

        Raises:
            ResultNotFoundError: If no stored result exists for the id
            TaskAlreadyQueuedError: If the id is already in flight
            StorageError: If the record cannot be marked queued (nothing is admitted)
            QueueFullError: If the buffer is at capacity (stored record marked error)
            QueueStoppedError: If the queue has been stopped (stored record marked error)
        """
        result = await self._repository.get_result(crawl_id)

        task = CrawlTask(id=crawl_id, url=result.url, created_at=datetime.now())
        await self._reserve(task)
        try:
            await self._repository.update_status(crawl_id, CrawlStatus.QUEUED)
        except Exception:
            async with self._lock:
                self._active_tasks.pop(crawl_id, None)
            raise
        await self._admit(task)

        logger.info("Re-queued crawl task", task_id=crawl_id, url=result.url)

    async def get_active_task(self, crawl_id: str) -> CrawlTask | None:
        """Look up an in-flight task. Does not consult the repository."""
        async with self._lock:
            task = self._active_tasks.get(crawl_id)
            return replace(task) if task is not None else None

    async def get_stats(self) -> QueueStats:
        async with self._lock:
            return QueueStats(
                queue_length=self._queue.qsize(),
                active_tasks=len(self._active_tasks),
                workers=self.config.workers,
                running=self._running,
            )

    async def _reserve(self, task: CrawlTask) -> None:
        """Claim the task's id in the in-flight map, or fail if it is taken."""
        async with self._lock:
            if task.id in self._active_tasks:
                raise TaskAlreadyQueuedError(f"crawl {task.id} is already queued or running")
            self._active_tasks[task.id] = task

    async def _admit(self, task: CrawlTask) -> None:
        """Non-blocking admission of a reserved task: buffer it or reject it at once."""
        async with self._lock:
            if self._closed:
                error: Exception = QueueStoppedError("queue is stopped, please try again later")
                message = QUEUE_STOPPED_MESSAGE
            else:
                try:
                    self._queue.put_nowait(task)
                    return
                except asyncio.QueueFull:
                    error = QueueFullError("queue is full, please try again later")
                    message = QUEUE_FULL_MESSAGE
            self._active_tasks.pop(task.id, None)

        log = logger.bind(task_id=task.id, url=task.url)
        log.warning("Crawl task rejected", reason=message)
        await self._mark_error(task.id, message, log)
        raise error

    async def _worker(self, worker_id: int, stop_event: asyncio.Event) -> None:
        """Pull and process tasks until the stop signal is observed."""
        log = logger.bind(worker_id=worker_id)
        self._live_workers += 1
        log.info("Worker started")

        stop_waiter = asyncio.ensure_future(stop_event.wait())
        try:
            while True:
                getter = asyncio.ensure_future(self._queue.get())
                await asyncio.wait({getter, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)

                if not getter.done():
                    # A cancelled get leaves its item in the buffer.
                    getter.cancel()
                    await asyncio.gather(getter, return_exceptions=True)

                if getter.done() and not getter.cancelled():
                    await self._process_task(getter.result(), worker_id)

                if stop_event.is_set():
                    log.info("Stop signal received, worker exiting")
                    return
        finally:
            stop_waiter.cancel()
            self._live_workers -= 1

    async def _process_task(self, task: CrawlTask, worker_id: int) -> None:
        """Crawl one task and persist its final state."""
        log = logger.bind(worker_id=worker_id, task_id=task.id, url=task.url)
        log.info("Processing crawl task")

        try:
            task.status = CrawlStatus.RUNNING
            try:
                await self._repository.update_status(task.id, CrawlStatus.RUNNING)
            except Exception as e:
                log.warning("Failed to update task status to running", error=str(e))

            try:
                result = await self._analyze(task.url, log)
            except Exception as e:
                log.error("Crawl failed", error=str(e))
                task.status = CrawlStatus.ERROR
                await self._mark_error(task.id, str(e) or type(e).__name__, log)
                return

            result.id = task.id
            result.status = CrawlStatus.COMPLETED
            result.updated_at = datetime.now()

            try:
                await self._repository.save_result(result)
            except Exception as e:
                log.error("Failed to save crawl result", error=str(e))
                task.status = CrawlStatus.ERROR
                await self._mark_error(task.id, SAVE_FAILED_MESSAGE, log)
            else:
                task.status = CrawlStatus.COMPLETED
                log.info("Crawl completed")
        finally:
            async with self._lock:
                self._active_tasks.pop(task.id, None)

    async def _analyze(self, url: str, log: Any) -> CrawlResult:
        """Run the crawler, retrying failures per configuration until the queue stops."""

        def log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            log.warning(
                "Crawl attempt failed, retrying",
                attempt=state.attempt_number,
                max_attempts=self.config.max_retries + 1,
                error=str(error),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1)
            | stop_when_event_set(self._stop_event),
            wait=wait_fixed(self.config.retry_delay),
            before_sleep=log_retry,
            reraise=True,
        )
        return await retrying(self._crawler.analyze_url, url)

    async def _drain_buffer(self) -> int:
        """Mark every task left in the buffer as an error and forget it."""
        dropped: list[CrawlTask] = []
        while True:
            try:
                dropped.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break

        for task in dropped:
            log = logger.bind(task_id=task.id, url=task.url)
            log.warning("Dropping buffered task on shutdown")
            await self._mark_error(task.id, DROPPED_ON_STOP_MESSAGE, log)

        async with self._lock:
            for task in dropped:
                self._active_tasks.pop(task.id, None)

        return len(dropped)

    async def _mark_error(self, crawl_id: str, message: str, log: Any) -> None:
        try:
            await self._repository.update_status(crawl_id, CrawlStatus.ERROR, message)
        except Exception as e:
            log.error("Failed to update task status to error", error=str(e))


# Global service instance
_queue_service: QueueService | None = None


def initialize_queue_service(
    config: QueueConfig, crawler: Crawler, repository: CrawlRepository
) -> QueueService:
    """Create the global queue service. Call during app startup."""
    global _queue_service
    _queue_service = QueueService(config, crawler, repository)
    logger.info("Queue service initialized", workers=config.workers, buffer_size=config.buffer_size)
    return _queue_service


def get_queue_service() -> QueueService:
    """Get the global queue service instance."""
    if _queue_service is None:
        raise RuntimeError("Queue service not initialized. Call initialize_queue_service() first.")
    return _queue_service


def reset_queue_service() -> None:
    """Forget the global queue service (used at shutdown and in tests)."""
    global _queue_service
    _queue_service = None
