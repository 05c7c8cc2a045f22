"""
HTML page analysis over plain HTTP.

Fetches a page with httpx, parses it with BeautifulSoup and reports the
title, HTML version, heading counts, link breakdown, login-form presence
and a bounded sample of broken links.
"""

import asyncio
from datetime import datetime
import re
from urllib.parse import urldefrag, urljoin, urlparse
import uuid

from bs4 import BeautifulSoup, Doctype
import httpx
import structlog

from crawl_service.core.errors import CrawlError
from crawl_service.core.models import BrokenLink, CrawlResult, CrawlStatus, HeadingCounts
from crawl_service.crawler.base import Crawler

logger = structlog.get_logger(__name__)

DEFAULT_MAX_CONTENT_SIZE = 10 * 1024 * 1024

# Hrefs that never point at a fetchable page
_SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")

LOGIN_INDICATORS = (
    "login",
    "signin",
    "sign-in",
    "log-in",
    "auth",
    "authentication",
    "username",
    "email",
    "user",
    "account",
    "password",
    "pwd",
    "pass",
    "submit",
    "button",
    "loginform",
    "authform",
    "signupform",
)

# Checked in order; XHTML doctypes must win over the plain HTML ones.
_DOCTYPE_VERSIONS = (
    ("XHTML 1.1", "XHTML 1.1"),
    ("XHTML 1.0", "XHTML 1.0"),
    ("HTML 4.01", "HTML 4.01"),
)


def detect_html_version(soup: BeautifulSoup) -> str:
    """Infer the HTML version from the doctype, assuming HTML5 when absent."""
    doctype = next((item for item in soup.contents if isinstance(item, Doctype)), None)
    if doctype is None:
        return "HTML5"

    declaration = str(doctype).upper()
    for marker, version in _DOCTYPE_VERSIONS:
        if marker in declaration:
            return version
    return "HTML5"


def count_headings(soup: BeautifulSoup) -> HeadingCounts:
    return HeadingCounts(**{f"h{level}": len(soup.find_all(f"h{level}")) for level in range(1, 7)})


def detect_login_form(soup: BeautifulSoup, html: str) -> bool:
    """A password input plus at least two login indicators anywhere in the markup."""
    password_input = soup.find("input", attrs={"type": re.compile(r"^password$", re.IGNORECASE)})
    if password_input is None:
        return False

    lowered = html.lower()
    return sum(1 for indicator in LOGIN_INDICATORS if indicator in lowered) >= 2


def classify_links(soup: BeautifulSoup, base_url: str) -> tuple[list[str], list[str]]:
    """
    Split the page's anchors into internal and external absolute URLs.

    Links are resolved against the final page URL, stripped of fragments
    and de-duplicated in document order. Only http(s) targets count.
    """
    base_host = urlparse(base_url).netloc.lower()
    internal: list[str] = []
    external: list[str] = []
    seen: set[str] = set()

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(_SKIPPED_HREF_PREFIXES):
            continue

        try:
            absolute, _ = urldefrag(urljoin(base_url, href))
            parsed = urlparse(absolute)
        except ValueError:
            logger.debug("Skipping malformed link", href=href)
            continue
        if parsed.scheme not in ("http", "https") or absolute in seen:
            continue
        seen.add(absolute)

        if parsed.netloc.lower() == base_host:
            internal.append(absolute)
        else:
            external.append(absolute)

    return internal, external


class HTMLCrawler(Crawler):
    """Crawler backed by httpx and BeautifulSoup."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "URL-Crawler-Bot/1.0",
        max_redirects: int = 10,
        max_links_to_check: int = 10,
        max_content_size: int = DEFAULT_MAX_CONTENT_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self.max_links_to_check = max_links_to_check
        self.max_content_size = max_content_size
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
            max_redirects=self.max_redirects,
            transport=self._transport,
        )

    async def analyze_url(self, url: str) -> CrawlResult:
        self.validate_url(url)
        logger.info("Starting page analysis", url=url)

        async with self._client() as client:
            html, final_url = await self._fetch(client, url)
            soup = BeautifulSoup(html, "html.parser")

            internal, external = classify_links(soup, final_url)
            broken = await self._check_links(client, (internal + external)[: self.max_links_to_check])

        now = datetime.now()
        result = CrawlResult(
            id=str(uuid.uuid4()),
            url=url,
            status=CrawlStatus.COMPLETED,
            created_at=now,
            updated_at=now,
            title=soup.title.get_text(strip=True) if soup.title else "",
            html_version=detect_html_version(soup),
            internal_links_count=len(internal),
            external_links_count=len(external),
            inaccessible_links_count=len(broken),
            has_login_form=detect_login_form(soup, html),
            heading_counts=count_headings(soup),
            broken_links=broken,
            external_links=external,
        )

        logger.info(
            "Page analysis completed",
            url=url,
            internal_links=result.internal_links_count,
            external_links=result.external_links_count,
            broken_links=result.inaccessible_links_count,
        )
        return result

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> tuple[str, str]:
        """Download the page body, enforcing the status and size limits."""
        try:
            async with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise CrawlError(f"HTTP {response.status_code}: {response.reason_phrase}")

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.max_content_size:
                    raise CrawlError(f"page exceeds {self.max_content_size} bytes")

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_content_size:
                        raise CrawlError(f"page exceeds {self.max_content_size} bytes")

                encoding = response.charset_encoding or "utf-8"
                final_url = str(response.url)
        except httpx.TooManyRedirects as e:
            raise CrawlError(f"too many redirects fetching {url}") from e
        except httpx.HTTPError as e:
            raise CrawlError(f"failed to fetch {url}: {e}") from e

        try:
            return body.decode(encoding, errors="replace"), final_url
        except LookupError:
            return body.decode("utf-8", errors="replace"), final_url

    async def _check_links(self, client: httpx.AsyncClient, links: list[str]) -> list[BrokenLink]:
        if not links:
            return []
        outcomes = await asyncio.gather(*(self._check_link(client, link) for link in links))
        return [outcome for outcome in outcomes if outcome is not None]

    async def _check_link(self, client: httpx.AsyncClient, link: str) -> BrokenLink | None:
        """HEAD the link, falling back to GET for servers that refuse HEAD."""
        try:
            response = await client.head(link)
            if response.status_code in (405, 501):
                async with client.stream("GET", link) as streamed:
                    response = streamed
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Link unreachable", link=link, error=str(e))
            return BrokenLink(url=link, status_code=0, status_text=str(e) or type(e).__name__)

        if response.status_code >= 400:
            return BrokenLink(
                url=link, status_code=response.status_code, status_text=response.reason_phrase
            )
        return None
