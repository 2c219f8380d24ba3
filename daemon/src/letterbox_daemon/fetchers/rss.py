"""RSS/Atom feed fetcher."""

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

import feedparser
import httpx

from ..errors import FeedFetchFailure
from ..models import FeedItem
from ..normalizer import strip_html
from ..observability import log as obs_log

logger = logging.getLogger(__name__)

USER_AGENT = "letterbox/0.1 (+rss collector)"


class RSSFetcher:
    """Fetches a feed over httpx and parses it with feedparser into FeedItems.

    fetch_items never raises: a feed that cannot be fetched or parsed yields
    an empty list and a fetcher.error event.
    """

    def __init__(
        self,
        max_items: Optional[int] = None,
        timeout: int = 30,
        client: Optional[httpx.Client] = None,
    ):
        self.max_items = max_items
        self.timeout = timeout
        self.client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    def fetch_items(self, url: str) -> List[FeedItem]:
        start_time = time.time()
        try:
            items = self.fetch_or_raise(url)
        except FeedFetchFailure as e:
            logger.error(str(e))
            obs_log(
                "fetcher.error",
                fetcher_type="rss",
                source_url=url,
                error=e.reason,
                duration_ms=int((time.time() - start_time) * 1000),
                status="error",
            )
            return []

        obs_log(
            "fetcher.complete",
            fetcher_type="rss",
            source_url=url,
            items_count=len(items),
            duration_ms=int((time.time() - start_time) * 1000),
            status="success",
        )
        return items

    def fetch_or_raise(self, url: str) -> List[FeedItem]:
        """Fetch and parse a feed.

        Raises:
            FeedFetchFailure: On transport errors, HTTP errors or unparseable feeds
        """
        logger.info(f"Fetching RSS feed: {url}")
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FeedFetchFailure(url, str(e)) from e

        feed = feedparser.parse(response.text)
        entries = feed.entries if hasattr(feed, "entries") else []

        if feed.bozo:
            if not entries:
                raise FeedFetchFailure(url, f"unparseable feed: {feed.bozo_exception}")
            logger.warning(f"Feed parsing issues for {url}: {feed.bozo_exception}")

        if self.max_items:
            entries = entries[: self.max_items]

        items = [self._to_item(entry) for entry in entries]
        logger.info(f"Found {len(items)} items in {url}")
        return items

    def _to_item(self, entry) -> FeedItem:
        link = entry.get("link", "")
        description = entry.get("summary") or entry.get("description") or ""
        snippet = strip_html(description) if description else ""
        return FeedItem(
            title=entry.get("title") or "Untitled",
            link=link,
            published_at=self._parse_published_date(entry),
            content=self._extract_content(entry, description, snippet),
            content_snippet=snippet,
            creator=entry.get("author", ""),
            guid=entry.get("id") or link,
        )

    def _extract_content(self, entry, description: str, snippet: str) -> str:
        """content:encoded / content, then description, then the plain snippet."""
        content = entry.get("content")
        if content:
            if isinstance(content, list):
                value = content[0].get("value", "")
            else:
                value = str(content)
            if value:
                return value
        return description or snippet

    def _parse_published_date(self, entry) -> Optional[datetime]:
        # feedparser normalizes dates to UTC time tuples
        for key in ("published_parsed", "updated_parsed"):
            parsed = entry.get(key)
            if parsed:
                try:
                    return datetime(*parsed[:6], tzinfo=timezone.utc)
                except (TypeError, ValueError) as e:
                    logger.debug(f"Could not parse {key}: {e}")
        return None

    def close(self) -> None:
        self.client.close()
