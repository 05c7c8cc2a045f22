"""Route modules for API v1."""

from . import crawls, health

__all__ = ["crawls", "health"]
