"""Repository pattern storage layer for Letterbox daemon."""

import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .database import get_db_connection
from .models import (
    Digest,
    FeedSource,
    ParsedItem,
    Sender,
    Sentiment,
    StoredRecord,
    Summary,
    utc_now,
)
from .schemas import (
    decode_string_list,
    decode_themes,
    encode_string_list,
    encode_themes,
)

logger = logging.getLogger(__name__)


def _to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Store every timestamp as UTC ISO-8601 so text ordering is time ordering."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Storage:
    """Repository for all database operations.

    Implements the repository pattern - all SQL stays in this class.
    Each thread lazily gets its own connection, so the background summary
    worker never shares a cursor with the thread that ingests.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize storage.

        Args:
            db_path: Optional custom database path for testing.
                     Defaults to $XDG_DATA_HOME/letterbox/letterbox.db
        """
        self.db_path = db_path
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        # Fail fast if the database is missing
        test_conn = get_db_connection(self.db_path)
        test_conn.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """Connection for the calling thread, created on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = get_db_connection(self.db_path)
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        """Close every connection this Storage opened."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Records

    def add_record(self, item: ParsedItem) -> StoredRecord:
        """Insert a parsed item as a new record with a fresh storage key.

        Args:
            item: Normalized item to persist

        Returns:
            The stored record

        Raises:
            sqlite3.Error: If database operation fails
        """
        record = StoredRecord.from_item(item)
        original = record.original_sender

        try:
            self.conn.execute(
                """
                INSERT INTO records (
                    id, content_id, external_id, subject, sender_name,
                    sender_email, received_at, raw_body, parsed_body,
                    is_forwarded, original_sender_name, original_sender_email,
                    is_newsletter, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.content_id,
                    record.external_id,
                    record.subject,
                    record.sender_name,
                    record.sender_email,
                    _to_db_time(record.received_at),
                    record.raw_body,
                    record.parsed_body,
                    record.is_forwarded,
                    original.name if original else None,
                    original.email if original else None,
                    record.is_newsletter_like,
                    _to_db_time(record.created_at),
                ),
            )
            self.conn.commit()
            return record

        except sqlite3.Error as e:
            self.conn.rollback()
            raise sqlite3.Error(f"Failed to add record: {e}")

    def find_duplicate(
        self,
        external_id: Optional[str] = None,
        marker: Optional[str] = None,
        content_id: Optional[str] = None,
    ) -> Optional[str]:
        """Find an existing record matching any of the given dedup keys.

        Args:
            external_id: Source-provided id (Message-ID, RSS guid/link, chat ts)
            marker: Line expected in the stored body (e.g. the item's source line)
            content_id: Content identity of the raw body

        Returns:
            Id of the first matching record, or None
        """
        clauses = []
        params: List[str] = []
        if external_id:
            clauses.append("external_id = ?")
            params.append(external_id)
        if marker:
            clauses.append("instr(raw_body, ?) > 0 OR instr(parsed_body, ?) > 0")
            params.extend([marker, marker])
        if content_id:
            clauses.append("content_id = ?")
            params.append(content_id)

        if not clauses:
            return None

        query = "SELECT id FROM records WHERE " + " OR ".join(
            f"({clause})" for clause in clauses
        )
        try:
            row = self.conn.execute(query + " LIMIT 1", params).fetchone()
            return row["id"] if row else None
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to check for duplicate record: {e}")

    def get_record(self, record_id: str) -> Optional[StoredRecord]:
        try:
            row = self.conn.execute(
                "SELECT * FROM records WHERE id = ?", (record_id,)
            ).fetchone()
            return self._row_to_record(row) if row else None
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to get record {record_id}: {e}")

    def list_records(self, limit: int = 50, offset: int = 0) -> List[StoredRecord]:
        """Records newest first (by received_at) with limit/offset paging."""
        try:
            cursor = self.conn.execute(
                """
                SELECT * FROM records
                ORDER BY received_at DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to list records: {e}")

    def get_records_by_sender(
        self, sender_email: str, limit: int = 50
    ) -> List[StoredRecord]:
        try:
            cursor = self.conn.execute(
                """
                SELECT * FROM records
                WHERE sender_email = ?
                ORDER BY received_at DESC
                LIMIT ?
                """,
                (sender_email, limit),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to get records for {sender_email}: {e}")

    def count_records(self) -> int:
        try:
            row = self.conn.execute("SELECT COUNT(*) FROM records").fetchone()
            return row[0]
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to count records: {e}")

    def _row_to_record(self, row: sqlite3.Row) -> StoredRecord:
        original = None
        if row["original_sender_email"] or row["original_sender_name"]:
            original = Sender(
                name=row["original_sender_name"] or "",
                email=row["original_sender_email"] or "",
            )
        return StoredRecord(
            id=row["id"],
            content_id=row["content_id"],
            external_id=row["external_id"],
            subject=row["subject"],
            sender_name=row["sender_name"],
            sender_email=row["sender_email"],
            received_at=_from_db_time(row["received_at"]),
            raw_body=row["raw_body"],
            parsed_body=row["parsed_body"],
            is_forwarded=bool(row["is_forwarded"]),
            original_sender=original,
            is_newsletter_like=bool(row["is_newsletter"]),
            created_at=_from_db_time(row["created_at"]),
        )

    # Summaries

    def get_summary(self, record_id: str) -> Optional[Summary]:
        """Get the cached summary for a record, if one exists."""
        try:
            row = self.conn.execute(
                "SELECT * FROM summaries WHERE record_id = ?", (record_id,)
            ).fetchone()
            return self._row_to_summary(row) if row else None
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to get summary for {record_id}: {e}")

    def insert_summary(self, summary: Summary) -> bool:
        """Insert a summary unless the record already has one.

        The UNIQUE(record_id) constraint decides concurrent inserts: exactly
        one writer wins, the others get False and should re-read.

        Returns:
            True if this call inserted the row, False if one already existed
        """
        try:
            cursor = self.conn.execute(
                """
                INSERT INTO summaries (
                    id, record_id, summary_text, key_points, topics,
                    sentiment, read_time_minutes, model_used, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(record_id) DO NOTHING
                """,
                (
                    summary.id,
                    summary.record_id,
                    summary.summary_text,
                    encode_string_list(summary.key_points),
                    encode_string_list(summary.topics),
                    summary.sentiment.value,
                    summary.read_time_minutes,
                    summary.model_used,
                    _to_db_time(summary.created_at),
                ),
            )
            self.conn.commit()
            return cursor.rowcount > 0

        except sqlite3.Error as e:
            self.conn.rollback()
            raise sqlite3.Error(f"Failed to insert summary: {e}")

    def get_summaries_for_records(self, record_ids: List[str]) -> Dict[str, Summary]:
        """Map record id -> summary for the records that have one."""
        if not record_ids:
            return {}
        placeholders = ",".join("?" for _ in record_ids)
        try:
            cursor = self.conn.execute(
                f"SELECT * FROM summaries WHERE record_id IN ({placeholders})",
                list(record_ids),
            )
            return {
                row["record_id"]: self._row_to_summary(row)
                for row in cursor.fetchall()
            }
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to get summaries: {e}")

    def count_summaries(self) -> int:
        try:
            return self.conn.execute("SELECT COUNT(*) FROM summaries").fetchone()[0]
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to count summaries: {e}")

    def _row_to_summary(self, row: sqlite3.Row) -> Summary:
        return Summary(
            id=row["id"],
            record_id=row["record_id"],
            summary_text=row["summary_text"],
            key_points=decode_string_list(row["key_points"]),
            topics=decode_string_list(row["topics"]),
            sentiment=Sentiment(row["sentiment"]),
            read_time_minutes=row["read_time_minutes"],
            model_used=row["model_used"] or "unknown",
            created_at=_from_db_time(row["created_at"]),
        )

    # Digests

    def add_digest(self, digest: Digest) -> str:
        try:
            self.conn.execute(
                """
                INSERT INTO digests (
                    id, date_range, total_newsletters, themes,
                    highlights, action_items, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    digest.id,
                    digest.date_range_label,
                    digest.total_newsletters,
                    encode_themes(digest.themes),
                    encode_string_list(digest.highlights),
                    encode_string_list(digest.action_items),
                    _to_db_time(digest.created_at),
                ),
            )
            self.conn.commit()
            return digest.id

        except sqlite3.Error as e:
            self.conn.rollback()
            raise sqlite3.Error(f"Failed to add digest: {e}")

    def get_latest_digest(self) -> Optional[Digest]:
        try:
            row = self.conn.execute(
                "SELECT * FROM digests ORDER BY created_at DESC LIMIT 1"
            ).fetchone()
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to get latest digest: {e}")

        if not row:
            return None
        return Digest(
            id=row["id"],
            date_range_label=row["date_range"],
            total_newsletters=row["total_newsletters"],
            themes=decode_themes(row["themes"]),
            highlights=decode_string_list(row["highlights"]),
            action_items=decode_string_list(row["action_items"]),
            created_at=_from_db_time(row["created_at"]),
        )

    # Feed sources

    def add_feed(
        self,
        url: str,
        name: str,
        enabled: bool = True,
        feed_id: Optional[str] = None,
    ) -> str:
        """Add an RSS feed source, returning the existing id if the URL is known.

        Raises:
            sqlite3.Error: If database operation fails
        """
        try:
            existing = self.conn.execute(
                "SELECT id FROM feed_sources WHERE url = ?", (url,)
            ).fetchone()
            if existing:
                return existing["id"]

            feed_id = feed_id or str(uuid.uuid4())
            self.conn.execute(
                """
                INSERT INTO feed_sources (id, url, name, enabled)
                VALUES (?, ?, ?, ?)
                """,
                (feed_id, url, name, enabled),
            )
            self.conn.commit()
            return feed_id

        except sqlite3.Error as e:
            self.conn.rollback()
            raise sqlite3.Error(f"Failed to add feed: {e}")

    def get_enabled_feeds(self) -> List[FeedSource]:
        return self._query_feeds("WHERE enabled = 1")

    def get_all_feeds(self) -> List[FeedSource]:
        return self._query_feeds("")

    def _query_feeds(self, where: str) -> List[FeedSource]:
        try:
            cursor = self.conn.execute(
                f"""
                SELECT id, url, name, last_fetched_at, enabled
                FROM feed_sources
                {where}
                ORDER BY name
                """
            )
            return [
                FeedSource(
                    id=row["id"],
                    url=row["url"],
                    name=row["name"],
                    last_fetched_at=_from_db_time(row["last_fetched_at"]),
                    enabled=bool(row["enabled"]),
                )
                for row in cursor.fetchall()
            ]
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to get feeds: {e}")

    def update_feed_last_fetched(
        self, feed_id: str, fetched_at: Optional[datetime] = None
    ) -> None:
        try:
            self.conn.execute(
                "UPDATE feed_sources SET last_fetched_at = ? WHERE id = ?",
                (_to_db_time(fetched_at or utc_now()), feed_id),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise sqlite3.Error(f"Failed to update feed {feed_id}: {e}")

    def set_feed_enabled(self, feed_id: str, enabled: bool) -> bool:
        """Enable or disable a feed. Returns False if the feed doesn't exist."""
        try:
            cursor = self.conn.execute(
                "UPDATE feed_sources SET enabled = ? WHERE id = ?",
                (enabled, feed_id),
            )
            self.conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            self.conn.rollback()
            raise sqlite3.Error(f"Failed to update feed {feed_id}: {e}")


# Process-scoped store with an explicit lifecycle; components still take a
# Storage argument so tests can inject their own.
_store: Optional[Storage] = None


def init_store(db_path: Optional[Path] = None) -> Storage:
    """Open the process-wide store, replacing any previously opened one."""
    global _store
    shutdown_store()
    _store = Storage(db_path)
    return _store


def get_store() -> Storage:
    if _store is None:
        raise RuntimeError("Store not initialized. Call init_store() first.")
    return _store


def shutdown_store() -> None:
    global _store
    if _store is not None:
        _store.close()
        _store = None
