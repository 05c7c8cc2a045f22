"""Exception hierarchy shared by the queue, the crawler and the repositories."""


class CrawlServiceError(Exception):
    """Base class for all crawl service errors."""


class InvalidURLError(CrawlServiceError):
    """The submitted URL failed validation."""


class QueueFullError(CrawlServiceError):
    """The admission buffer is at capacity."""


class QueueStoppedError(CrawlServiceError):
    """The queue has been stopped and no longer admits tasks."""


class TaskAlreadyQueuedError(CrawlServiceError):
    """A task with the same id is already in flight."""


class ResultNotFoundError(CrawlServiceError):
    """No stored crawl result exists for the requested id."""


class StorageError(CrawlServiceError):
    """The result repository failed for a reason other than a missing record."""


class CrawlError(CrawlServiceError):
    """The crawler could not fetch or analyse the page."""
