"""Version 1 of the crawl HTTP API."""
