"""Crawler implementations used by the queue workers."""

from .base import Crawler, validate_target_url
from .html_crawler import HTMLCrawler

__all__ = ["Crawler", "HTMLCrawler", "validate_target_url"]
