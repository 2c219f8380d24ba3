"""Newsletter summarization with cache-or-generate semantics."""

import logging
import threading
import weakref
from typing import List, Optional

from .digest import DigestSynthesizer
from .errors import SummarizationUnavailable
from .models import BatchResult, StoredRecord, SummarizedRecord, Summary
from .observability import log as obs_log
from .providers import ProviderChain
from .schemas import SummaryPayload
from .storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_CHARS = 8000

SYSTEM_PROMPT = (
    "You are an expert at analyzing newsletters and extracting key insights. "
    "Always respond with valid JSON."
)

PROMPT_TEMPLATE = """Analyze this newsletter and provide a structured summary.

Newsletter Subject: {subject}
From: {sender_name} <{sender_email}>

Content:
{content}

Respond in JSON format with the following structure:
{{
  "summary": "A concise 2-3 sentence summary of the newsletter's main content",
  "keyPoints": ["Key point 1", "Key point 2", "Key point 3", "Key point 4", "Key point 5"],
  "topics": ["topic1", "topic2", "topic3"],
  "sentiment": "positive" | "neutral" | "negative",
  "readTimeMinutes": estimated_reading_time_as_number
}}

Focus on extracting actionable insights and the most important information. Keep key points concise but informative."""


class NewsletterSummarizer:
    """Return the summary of a stored record, generating it at most once.

    A cached summary is returned as-is. Otherwise the provider chain is
    asked for a JSON summary, which is coerced and persisted under
    UNIQUE(record_id); a losing concurrent writer re-reads the winner's row.
    """

    def __init__(
        self,
        storage: Storage,
        chain: ProviderChain,
        notifier=None,
        max_body_chars: int = DEFAULT_MAX_BODY_CHARS,
        digest: Optional[DigestSynthesizer] = None,
    ):
        self.storage = storage
        self.chain = chain
        self.notifier = notifier
        self.max_body_chars = max_body_chars
        self.digest = digest or DigestSynthesizer(chain, storage)
        # Entries disappear once no caller holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def _lock_for(self, record_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(record_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[record_id] = lock
            return lock

    def build_prompt(self, record: StoredRecord) -> str:
        content = record.parsed_body or record.raw_body[: self.max_body_chars]
        return PROMPT_TEMPLATE.format(
            subject=record.subject,
            sender_name=record.sender_name,
            sender_email=record.sender_email,
            content=content,
        )

    def summarize(self, record: StoredRecord) -> Summary:
        """Cached summary for the record, or a newly generated and stored one.

        Raises:
            SummarizationUnavailable: If no summary exists and every provider failed
            LookupError: If the insert was refused but no stored summary exists
        """
        cached = self.storage.get_summary(record.id)
        if cached is not None:
            obs_log("summary.cache_hit", record_id=record.id)
            logger.debug(f"Cache hit for newsletter: {record.subject}")
            return cached

        with self._lock_for(record.id):
            # Another thread may have finished while we waited
            cached = self.storage.get_summary(record.id)
            if cached is not None:
                obs_log("summary.cache_hit", record_id=record.id)
                return cached

            logger.info(f"Generating summary for: {record.subject}")
            data, provider = self.chain.complete_json(
                SYSTEM_PROMPT, self.build_prompt(record), action="summarize"
            )
            payload = SummaryPayload.model_validate(data)
            summary = Summary(
                record_id=record.id,
                summary_text=payload.summary,
                key_points=payload.key_points,
                topics=payload.topics,
                sentiment=payload.sentiment,
                read_time_minutes=payload.read_time_minutes,
                model_used=provider.model,
            )

            if not self.storage.insert_summary(summary):
                # Lost the race to another process
                existing = self.storage.get_summary(record.id)
                if existing is None:
                    raise LookupError(
                        f"Summary for {record.id} was neither stored nor found"
                    )
                logger.info(f"Summary for {record.id} already stored, using it")
                return existing

            obs_log(
                "summary.created",
                record_id=record.id,
                provider=provider.name,
                model=provider.model,
            )
            logger.info(f"Saved summary for: {record.subject}")

        self._notify(record, summary)
        return summary

    def _notify(self, record: StoredRecord, summary: Summary) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.post(self.notifier.format_summary(record, summary))
        except Exception as e:
            logger.warning(f"Notification for {record.id} failed: {e}")

    def summarize_records(self, record_ids: List[str]) -> BatchResult:
        """Summarize records one by one, then synthesize a digest of the results.

        Missing records and per-record provider exhaustion are reported in
        BatchResult.errors without stopping the batch.
        """
        result = BatchResult()

        for record_id in record_ids:
            record = self.storage.get_record(record_id)
            if record is None:
                result.errors[record_id] = "Newsletter not found"
                continue
            try:
                summary = self.summarize(record)
            except (SummarizationUnavailable, LookupError) as e:
                logger.error(f"Failed to summarize {record_id}: {e}")
                result.errors[record_id] = str(e)
                continue
            result.summaries.append(SummarizedRecord(record=record, summary=summary))

        if result.summaries:
            try:
                result.digest = self.digest.synthesize(result.summaries)
            except SummarizationUnavailable as e:
                logger.error(f"Failed to synthesize digest: {e}")
                result.errors["digest"] = str(e)

        return result
