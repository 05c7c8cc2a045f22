"""
Crawler interface and shared URL validation.

Validation is deliberately strict and cheap: it runs synchronously before
anything is stored, so a rejected URL leaves no trace in the repository.
"""

from abc import ABC, abstractmethod

from crawl_service.core.errors import InvalidURLError
from crawl_service.core.models import CrawlResult

MALICIOUS_PATTERNS = ("javascript:", "data:", "file:", "ftp:")


def validate_target_url(url: str) -> None:
    """
    Check that a URL is an http(s) address without embedded dangerous schemes.

    Raises:
        InvalidURLError: With a message describing the first failed check
    """
    if not url:
        raise InvalidURLError("URL cannot be empty")

    lowered = url.lower()
    if not lowered.startswith(("http://", "https://")):
        raise InvalidURLError("URL must start with http:// or https://")

    if any(pattern in lowered for pattern in MALICIOUS_PATTERNS):
        raise InvalidURLError("potentially malicious URL pattern detected")


class Crawler(ABC):
    """Analyses a single URL. Must be safe to call from several workers at once."""

    def validate_url(self, url: str) -> None:
        """
        Validate a URL before it is accepted for crawling.

        Raises:
            InvalidURLError: If the URL is rejected
        """
        validate_target_url(url)

    @abstractmethod
    async def analyze_url(self, url: str) -> CrawlResult:
        """
        Fetch and analyse a page.

        The returned result's id, status and timestamps are overwritten by
        the queue worker that stores it.

        Raises:
            CrawlError: If the page cannot be fetched or analysed
        """
