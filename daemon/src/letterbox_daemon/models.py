"""Data models for Letterbox daemon."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Sentiment(str, Enum):
    """Overall tone of a newsletter."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


@dataclass
class Sender:
    """A display name and email address pair."""

    name: str
    email: str


@dataclass
class ParsedItem:
    """Source-agnostic representation of one newsletter, email or RSS entry.

    content_id is always derived from raw_body, so re-parsing the same raw
    text yields the same identity.
    """

    content_id: str
    subject: str
    sender_name: str
    sender_email: str
    raw_body: str
    parsed_body: str
    received_at: datetime = field(default_factory=utc_now)
    external_id: Optional[str] = None
    is_forwarded: bool = False
    original_sender: Optional[Sender] = None
    is_newsletter_like: bool = False


@dataclass
class StoredRecord:
    """A persisted ParsedItem. Matches the records table schema."""

    content_id: str
    subject: str
    sender_name: str
    sender_email: str
    raw_body: str
    parsed_body: str
    received_at: datetime
    external_id: Optional[str] = None
    is_forwarded: bool = False
    original_sender: Optional[Sender] = None
    is_newsletter_like: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_item(cls, item: ParsedItem) -> "StoredRecord":
        """Build a new record (fresh storage key) from a parsed item."""
        return cls(
            content_id=item.content_id,
            subject=item.subject,
            sender_name=item.sender_name,
            sender_email=item.sender_email,
            raw_body=item.raw_body,
            parsed_body=item.parsed_body,
            received_at=item.received_at,
            external_id=item.external_id,
            is_forwarded=item.is_forwarded,
            original_sender=item.original_sender,
            is_newsletter_like=item.is_newsletter_like,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for display and API-style output."""
        return {
            "id": self.id,
            "content_id": self.content_id,
            "external_id": self.external_id,
            "subject": self.subject,
            "sender_name": self.sender_name,
            "sender_email": self.sender_email,
            "received_at": self.received_at.isoformat(),
            "is_forwarded": self.is_forwarded,
            "original_sender": {
                "name": self.original_sender.name,
                "email": self.original_sender.email,
            }
            if self.original_sender
            else None,
            "is_newsletter_like": self.is_newsletter_like,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Summary:
    """Structured AI summary of one record. At most one per record."""

    record_id: str
    summary_text: str
    key_points: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    read_time_minutes: int = 5
    model_used: str = "unknown"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "record_id": self.record_id,
            "summary_text": self.summary_text,
            "key_points": list(self.key_points),
            "topics": list(self.topics),
            "sentiment": self.sentiment.value,
            "read_time_minutes": self.read_time_minutes,
            "model_used": self.model_used,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SummarizedRecord:
    """A record paired with its summary, the unit of digest input."""

    record: StoredRecord
    summary: Summary


@dataclass
class BatchResult:
    """Outcome of summarizing a batch of records.

    errors maps record id to a human-readable reason; digest is None when no
    record in the batch could be summarized.
    """

    summaries: List[SummarizedRecord] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    digest: Optional["Digest"] = None


@dataclass
class DigestTheme:
    """A theme spanning several newsletters."""

    theme: str
    description: str
    related_subjects: List[str] = field(default_factory=list)


@dataclass
class Digest:
    """Cross-newsletter report of themes, highlights and action items."""

    date_range_label: str
    total_newsletters: int
    themes: List[DigestTheme] = field(default_factory=list)
    highlights: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date_range_label": self.date_range_label,
            "total_newsletters": self.total_newsletters,
            "themes": [
                {
                    "theme": t.theme,
                    "description": t.description,
                    "related_subjects": list(t.related_subjects),
                }
                for t in self.themes
            ],
            "highlights": list(self.highlights),
            "action_items": list(self.action_items),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FeedSource:
    """An RSS feed polled by the ingestion pipeline.

    Matches the feed_sources table schema.
    """

    url: str
    name: str
    enabled: bool = True
    last_fetched_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class FeedItem:
    """One entry returned by the feed fetcher."""

    title: str
    link: str
    published_at: Optional[datetime] = None
    content: str = ""
    content_snippet: str = ""
    creator: str = ""
    guid: str = ""


@dataclass
class IngestResult:
    """Outcome of ingesting one item.

    is_new is False when the item matched an existing record; that is a
    designed no-op, not an error.
    """

    record_id: Optional[str]
    is_new: bool
    item: ParsedItem

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "is_new": self.is_new,
            "subject": self.item.subject,
            "sender": self.item.sender_name,
            "is_newsletter_like": self.item.is_newsletter_like,
            "received_at": self.item.received_at.isoformat(),
        }
