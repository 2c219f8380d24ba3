"""Ingestion pipeline: normalize, deduplicate, persist, hand off to summarization."""

import logging
import sqlite3
from typing import Any, Dict, Optional, Union

from rich.console import Console

from .errors import FeedFetchFailure, UnparsableContent
from .fetchers import RSSFetcher
from .inbound import (
    extract_email_from_event,
    is_email_integration_message,
    message_event,
    url_verification_challenge,
)
from .models import FeedSource, IngestResult, ParsedItem
from .normalizer import degraded_item, normalize, normalize_feed_item, source_marker
from .observability import log as obs_log
from .storage import Storage
from .worker import SummaryWorker

logger = logging.getLogger(__name__)

CHAT_EXTERNAL_ID_PREFIX = "slack_"


class IngestionPipeline:
    """Turns raw inputs and feed entries into stored records, exactly once.

    An item is a duplicate when an existing record shares its external id,
    contains its source marker (e.g. the RSS link) in its body, or has the
    same content id. Duplicates are dropped silently.
    """

    def __init__(
        self,
        storage: Storage,
        fetcher: Optional[RSSFetcher] = None,
        worker: Optional[SummaryWorker] = None,
        console: Optional[Console] = None,
        chat_channel: Optional[str] = None,
        bot_marker: str = "",
    ):
        self.storage = storage
        self.fetcher = fetcher
        self.worker = worker
        self.console = console or Console()
        self.chat_channel = chat_channel
        self.bot_marker = bot_marker

    def ingest_raw(
        self, raw: Union[str, bytes], external_id: Optional[str] = None
    ) -> IngestResult:
        """Ingest raw email text (MIME or forwarded), degrading if unparseable.

        Args:
            raw: The email as received
            external_id: Source id that overrides the parsed Message-ID
        """
        try:
            item = normalize(raw)
        except UnparsableContent as e:
            logger.warning(f"Could not parse email, storing degraded item: {e}")
            item = degraded_item(raw)

        if external_id:
            item.external_id = external_id
        return self.ingest_item(item, source="email")

    def ingest_item(
        self, item: ParsedItem, marker: Optional[str] = None, source: str = "email"
    ) -> IngestResult:
        existing_id = self.storage.find_duplicate(
            external_id=item.external_id,
            marker=marker,
            content_id=item.content_id,
        )
        if existing_id:
            logger.debug(f"Duplicate of {existing_id}, skipping: {item.subject}")
            obs_log(
                "ingest.duplicate",
                source=source,
                existing_id=existing_id,
                content_id=item.content_id,
            )
            return IngestResult(record_id=existing_id, is_new=False, item=item)

        record = self.storage.add_record(item)
        logger.info(f"Newsletter saved: {record.subject} (ID: {record.id})")
        obs_log(
            "ingest.record",
            source=source,
            record_id=record.id,
            content_id=record.content_id,
            is_newsletter=record.is_newsletter_like,
        )
        self._schedule_summary(record.id)
        return IngestResult(record_id=record.id, is_new=True, item=item)

    def _schedule_summary(self, record_id: str) -> None:
        if self.worker is None:
            return
        try:
            self.worker.submit(record_id)
        except Exception as e:
            logger.error(f"Could not queue summary for {record_id}: {e}")

    def ingest_chat_event(self, event: Dict[str, Any]) -> Optional[IngestResult]:
        """Ingest a chat message carrying a forwarded email.

        Returns None when the message is not from an email integration or
        carries no text.
        """
        if not is_email_integration_message(event):
            return None
        content = extract_email_from_event(event)
        if not content:
            return None

        ts = event.get("ts")
        logger.info(f"Processing email message from chat: {ts}")
        external_id = f"{CHAT_EXTERNAL_ID_PREFIX}{ts}" if ts else None
        return self.ingest_raw(content, external_id=external_id)

    def handle_chat_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Response body for a Slack Events API payload."""
        challenge = url_verification_challenge(payload)
        if challenge is not None:
            return {"challenge": challenge}

        event = message_event(payload, self.chat_channel, self.bot_marker)
        if event is None:
            return {"ok": True}

        result = self.ingest_chat_event(event)
        response: Dict[str, Any] = {"ok": True}
        if result is not None:
            response["record_id"] = result.record_id
            response["is_new"] = result.is_new
        return response

    def collect_feed(self, feed: FeedSource) -> Dict[str, int]:
        """Fetch one feed and ingest its entries, then stamp last_fetched_at.

        Raises:
            FeedFetchFailure: If storing the feed's entries fails
        """
        if self.fetcher is None:
            self.fetcher = RSSFetcher()

        items = self.fetcher.fetch_items(feed.url)
        stats = {"items_fetched": len(items), "items_new": 0, "items_duplicate": 0}

        for item in items:
            try:
                result = self.ingest_item(
                    normalize_feed_item(item, feed),
                    marker=source_marker(item.link) if item.link else None,
                    source="rss",
                )
            except sqlite3.Error as e:
                raise FeedFetchFailure(feed.url, str(e)) from e
            if result.is_new:
                stats["items_new"] += 1
            else:
                stats["items_duplicate"] += 1

        try:
            self.storage.update_feed_last_fetched(feed.id)
        except sqlite3.Error as e:
            raise FeedFetchFailure(feed.url, str(e)) from e

        obs_log("feed.processed", feed_id=feed.id, feed_url=feed.url, **stats)
        return stats

    def collect_feeds(self) -> Dict[str, Any]:
        """Run one collection pass over every enabled feed.

        Feeds are independent: a failing feed is logged and the rest still run.
        """
        stats: Dict[str, Any] = {
            "feeds_total": 0,
            "feeds_processed": 0,
            "items_fetched": 0,
            "items_new": 0,
            "items_duplicate": 0,
            "errors": [],
        }

        feeds = self.storage.get_enabled_feeds()
        stats["feeds_total"] = len(feeds)
        if not feeds:
            self.console.print(
                "[yellow]No enabled feeds. Add one with 'letterbox feeds add'.[/yellow]"
            )
            return stats

        for feed_num, feed in enumerate(feeds, 1):
            self.console.print(
                f"[bold cyan]Processing feed {feed_num}/{len(feeds)}: {feed.name}[/bold cyan]"
            )
            try:
                feed_stats = self.collect_feed(feed)
            except Exception as e:
                error_msg = f"Failed to process feed {feed.url}: {e}"
                logger.error(error_msg)
                self.console.print(f"  [red]{error_msg}[/red]")
                stats["errors"].append(error_msg)
                continue

            stats["feeds_processed"] += 1
            for key in ("items_fetched", "items_new", "items_duplicate"):
                stats[key] += feed_stats[key]
            self.console.print(
                f"  Found {feed_stats['items_fetched']} items, "
                f"{feed_stats['items_new']} new"
            )

        self.console.print(
            f"[bold green]Collection complete[/bold green]: {stats['items_new']} new "
            f"from {stats['feeds_processed']}/{stats['feeds_total']} feeds"
        )
        return stats
