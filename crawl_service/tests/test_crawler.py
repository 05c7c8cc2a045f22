"""
Tests for URL validation and HTML page analysis.

HTTP traffic is served by httpx.MockTransport, so no network access is needed.
"""

import httpx
import pytest

from crawl_service.core.errors import CrawlError, InvalidURLError
from crawl_service.core.models import HeadingCounts
from crawl_service.crawler import HTMLCrawler, validate_target_url

HOME_PAGE = """<!DOCTYPE html>
<html>
<head><title>  Example Home </title></head>
<body>
  <h1>Welcome</h1>
  <h2>News</h2><h2>Events</h2>
  <h3>Details</h3>
  <a href="/about">About</a>
  <a href="/about#team">Team</a>
  <a href="https://example.com/missing">Missing</a>
  <a href="https://partner.example/">Partner</a>
  <a href="https://down.example/">Down</a>
  <a href="mailto:team@example.com">Mail</a>
  <a href="#top">Top</a>
  <a href="javascript:void(0)">Nothing</a>
</body>
</html>
"""

LOGIN_PAGE = """<html><body>
<form id="loginform" action="/session">
  <input type="text" name="username">
  <input type="PASSWORD" name="pwd">
  <button type="submit">Sign in</button>
</form>
</body></html>
"""

XHTML_PAGE = (
    '<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Strict//EN" '
    '"http://www.w3.org/TR/xhtml1/DTD/xhtml1-strict.dtd">'
    "<html><head><title>Old</title></head><body></body></html>"
)

MALFORMED_LINKS_PAGE = """<html><head><title>Messy</title></head><body>
  <a href="http://[broken">Broken IPv6</a>
  <a href="/about">About</a>
  <a href="http://example.com:abc/">Bad port</a>
</body></html>
"""


def site_handler(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if url == "https://example.com/":
        return httpx.Response(200, html=HOME_PAGE)
    if url == "https://example.com/about":
        return httpx.Response(200, html="<html></html>")
    if url == "https://example.com/missing":
        return httpx.Response(404)
    if url == "https://partner.example/":
        # Refuses HEAD, answers GET
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, html="<html></html>")
    if url == "https://down.example/":
        raise httpx.ConnectError("connection refused", request=request)
    if url == "https://example.com/login":
        return httpx.Response(200, html=LOGIN_PAGE)
    if url == "https://example.com/old":
        return httpx.Response(200, html=XHTML_PAGE)
    if url == "https://example.com/messy":
        return httpx.Response(200, html=MALFORMED_LINKS_PAGE)
    if url == "https://example.com/moved":
        return httpx.Response(301, headers={"Location": "https://example.com/"})
    if url == "https://example.com/loop":
        return httpx.Response(302, headers={"Location": "https://example.com/loop"})
    if url == "https://example.com/huge":
        return httpx.Response(200, content=b"x" * 2048)
    return httpx.Response(500)


@pytest.fixture
def crawler():
    return HTMLCrawler(
        timeout=5.0,
        max_redirects=3,
        max_links_to_check=10,
        transport=httpx.MockTransport(site_handler),
    )


class TestValidateTargetURL:
    """Test URL validation rules."""

    @pytest.mark.parametrize(
        "url",
        ["http://example.com", "https://example.com/path?q=1", "HTTPS://EXAMPLE.COM"],
    )
    def test_accepts_http_urls(self, url):
        validate_target_url(url)

    @pytest.mark.parametrize(
        "url, message",
        [
            ("", "URL cannot be empty"),
            ("example.com", "URL must start with http:// or https://"),
            ("ftp://example.com", "URL must start with http:// or https://"),
            ("https://example.com/?next=javascript:alert(1)", "potentially malicious URL pattern detected"),
            ("https://example.com/DATA:text", "potentially malicious URL pattern detected"),
            ("https://example.com/?u=file:///etc/passwd", "potentially malicious URL pattern detected"),
        ],
    )
    def test_rejects_invalid_urls(self, url, message):
        with pytest.raises(InvalidURLError) as exc_info:
            validate_target_url(url)

        assert str(exc_info.value) == message

    def test_crawler_uses_shared_validation(self, crawler):
        with pytest.raises(InvalidURLError):
            crawler.validate_url("javascript:alert(1)")


class TestHTMLCrawler:
    """Test page analysis against a mocked site."""

    @pytest.mark.asyncio
    async def test_analyzes_page(self, crawler):
        result = await crawler.analyze_url("https://example.com/")

        assert result.url == "https://example.com/"
        assert result.title == "Example Home"
        assert result.html_version == "HTML5"
        assert result.heading_counts == HeadingCounts(h1=1, h2=2, h3=1)
        assert result.has_login_form is False

    @pytest.mark.asyncio
    async def test_classifies_links(self, crawler):
        result = await crawler.analyze_url("https://example.com/")

        # /about and /about#team are the same target
        assert result.internal_links_count == 2
        assert result.external_links_count == 2
        assert result.external_links == ["https://partner.example/", "https://down.example/"]

    @pytest.mark.asyncio
    async def test_reports_broken_links(self, crawler):
        result = await crawler.analyze_url("https://example.com/")

        broken = {link.url: link for link in result.broken_links}
        assert set(broken) == {"https://example.com/missing", "https://down.example/"}
        assert broken["https://example.com/missing"].status_code == 404
        assert broken["https://example.com/missing"].status_text == "Not Found"
        assert broken["https://down.example/"].status_code == 0
        assert result.inaccessible_links_count == 2

    @pytest.mark.asyncio
    async def test_link_check_is_capped(self):
        checked: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                checked.append(str(request.url))
            return httpx.Response(200, html=HOME_PAGE)

        crawler = HTMLCrawler(max_links_to_check=1, transport=httpx.MockTransport(handler))

        await crawler.analyze_url("https://example.com/")

        assert checked == ["https://example.com/about"]

    @pytest.mark.asyncio
    async def test_detects_login_form(self, crawler):
        result = await crawler.analyze_url("https://example.com/login")

        assert result.has_login_form is True

    @pytest.mark.asyncio
    async def test_detects_xhtml_doctype(self, crawler):
        result = await crawler.analyze_url("https://example.com/old")

        assert result.html_version == "XHTML 1.0"
        assert result.title == "Old"

    @pytest.mark.asyncio
    async def test_follows_redirects(self, crawler):
        result = await crawler.analyze_url("https://example.com/moved")

        assert result.url == "https://example.com/moved"
        assert result.title == "Example Home"

    @pytest.mark.asyncio
    async def test_too_many_redirects(self, crawler):
        with pytest.raises(CrawlError, match="too many redirects"):
            await crawler.analyze_url("https://example.com/loop")

    @pytest.mark.asyncio
    async def test_http_error_status(self, crawler):
        with pytest.raises(CrawlError, match="HTTP 500"):
            await crawler.analyze_url("https://example.com/broken")

    @pytest.mark.asyncio
    async def test_network_error(self, crawler):
        with pytest.raises(CrawlError, match="failed to fetch"):
            await crawler.analyze_url("https://down.example/")

    @pytest.mark.asyncio
    async def test_oversized_page(self):
        crawler = HTMLCrawler(
            max_content_size=1024, transport=httpx.MockTransport(site_handler)
        )

        with pytest.raises(CrawlError, match="exceeds 1024 bytes"):
            await crawler.analyze_url("https://example.com/huge")

    @pytest.mark.asyncio
    async def test_malformed_links_do_not_fail_analysis(self, crawler):
        result = await crawler.analyze_url("https://example.com/messy")

        assert result.title == "Messy"
        assert result.internal_links_count == 1
        assert result.external_links_count == 1
        # Unparseable port: reported as unreachable instead of aborting
        assert [(link.url, link.status_code) for link in result.broken_links] == [
            ("http://example.com:abc/", 0)
        ]
