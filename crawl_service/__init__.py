"""URL crawl queue service."""
