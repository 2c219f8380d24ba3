"""Background summarization of newly ingested records."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import List, Optional, Set, Tuple

from .observability import log as obs_log
from .summarizer import NewsletterSummarizer

logger = logging.getLogger(__name__)


class SummaryWorker:
    """Summarizes records on a small thread pool, off the ingestion path.

    submit() never blocks or raises. Failures go to the worker's own error
    channel: the errors list, an error log line and a worker.error event.
    """

    def __init__(self, summarizer: NewsletterSummarizer, max_workers: int = 2):
        self.summarizer = summarizer
        self.errors: List[Tuple[str, str]] = []
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="letterbox-summary"
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, record_id: str) -> Optional[Future]:
        """Queue a record for summarization. Returns None if the worker is closed."""
        with self._lock:
            if self._closed:
                logger.warning(f"Worker closed, not summarizing {record_id}")
                return None
            future = self._executor.submit(self._run, record_id)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, record_id: str) -> None:
        try:
            record = self.summarizer.storage.get_record(record_id)
            if record is None:
                raise LookupError(f"Record {record_id} not found")
            self.summarizer.summarize(record)
        except Exception as e:
            self._record_error(record_id, e)

    def _record_error(self, record_id: str, error: Exception) -> None:
        with self._lock:
            self.errors.append((record_id, str(error)))
        logger.error(f"Background summarization of {record_id} failed: {error}")
        obs_log(
            "worker.error",
            record_id=record_id,
            error=str(error),
            error_type=type(error).__name__,
        )

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued record has been processed."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait_for_pending)
