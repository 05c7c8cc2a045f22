"""Core domain: models, errors and the crawl queue."""
