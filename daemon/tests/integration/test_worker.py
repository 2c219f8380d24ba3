"""Integration tests for background summarization."""

from rich.console import Console

from letterbox_daemon.identity import content_id_for
from letterbox_daemon.ingestion import IngestionPipeline
from letterbox_daemon.models import ParsedItem
from letterbox_daemon.providers import ProviderChain
from letterbox_daemon.storage import Storage
from letterbox_daemon.summarizer import NewsletterSummarizer
from letterbox_daemon.worker import SummaryWorker


def _item(body: str) -> ParsedItem:
    return ParsedItem(
        content_id=content_id_for(body),
        subject="Weekly",
        sender_name="Morning Brew",
        sender_email="crew@morningbrew.com",
        raw_body=body,
        parsed_body=body,
    )


def test_ingested_records_are_summarized_in_background(
    storage: Storage, make_provider, summary_json, sample_email
) -> None:
    """Test ingestion hands new records to the worker, which stores a summary."""
    summarizer = NewsletterSummarizer(
        storage, ProviderChain([make_provider("openai", [summary_json])])
    )
    worker = SummaryWorker(summarizer)
    pipeline = IngestionPipeline(storage, worker=worker, console=Console(quiet=True))

    try:
        result = pipeline.ingest_raw(sample_email)
        worker.drain(timeout=10)
    finally:
        worker.shutdown()

    assert storage.get_summary(result.record_id) is not None
    assert worker.errors == []


def test_failures_go_to_error_channel(storage: Storage, make_provider) -> None:
    """Test provider exhaustion and missing records are recorded, not raised."""
    summarizer = NewsletterSummarizer(
        storage, ProviderChain([make_provider("openai", [RuntimeError("insufficient_quota")])])
    )
    worker = SummaryWorker(summarizer)
    record = storage.add_record(_item("body"))

    try:
        worker.submit(record.id)
        worker.submit("missing-id")
        worker.drain(timeout=10)
    finally:
        worker.shutdown()

    errors = dict(worker.errors)
    assert "All AI providers failed" in errors[record.id]
    assert "not found" in errors["missing-id"]
    assert storage.get_summary(record.id) is None


def test_submit_after_shutdown_is_ignored(storage: Storage, make_provider, summary_json) -> None:
    summarizer = NewsletterSummarizer(
        storage, ProviderChain([make_provider("openai", [summary_json])])
    )
    worker = SummaryWorker(summarizer)
    record = storage.add_record(_item("body"))

    worker.shutdown()

    assert worker.submit(record.id) is None
    assert storage.get_summary(record.id) is None
