"""Content fetchers for newsletter sources."""

from .rss import RSSFetcher

__all__ = ["RSSFetcher"]
