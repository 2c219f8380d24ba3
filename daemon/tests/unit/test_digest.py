"""Unit tests for digest synthesis."""

import json
import sqlite3
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from letterbox_daemon.digest import DigestSynthesizer, date_range_label, format_entry
from letterbox_daemon.errors import SummarizationUnavailable
from letterbox_daemon.models import StoredRecord, SummarizedRecord, Summary
from letterbox_daemon.providers import ProviderChain


def _entry(subject: str, day: int) -> SummarizedRecord:
    record = StoredRecord(
        content_id="00000001",
        subject=subject,
        sender_name="Latent Space",
        sender_email="latent.space@rss.feed",
        raw_body="raw",
        parsed_body="parsed",
        received_at=datetime(2024, 5, day, 9, 0, tzinfo=timezone.utc),
    )
    summary = Summary(
        record_id=record.id,
        summary_text=f"Summary of {subject}",
        key_points=["point one", "point two"],
        topics=["ai", "chips"],
    )
    return SummarizedRecord(record=record, summary=summary)


DIGEST_JSON = json.dumps(
    {
        "themes": [
            {
                "theme": "Inference costs",
                "description": "Everyone is optimizing serving",
                "relatedNewsletters": ["Issue 1", "Issue 2"],
            }
        ],
        "highlights": ["H1", "H2", "H3"],
        "actionItems": ["Benchmark your stack"],
    }
)


def test_empty_input_makes_no_provider_call(make_provider) -> None:
    """Test empty input yields a zero-valued digest without calling any provider."""
    provider = make_provider("openai", [DIGEST_JSON])

    digest = DigestSynthesizer(ProviderChain([provider])).synthesize([])

    assert digest.total_newsletters == 0
    assert digest.themes == []
    assert digest.highlights == []
    assert digest.action_items == []
    assert provider.calls == []


def test_synthesize_parses_response(make_provider) -> None:
    provider = make_provider("openai", [DIGEST_JSON])
    entries = [_entry("Issue 1", 3), _entry("Issue 2", 7)]

    digest = DigestSynthesizer(ProviderChain([provider])).synthesize(entries)

    assert digest.total_newsletters == 2
    assert digest.date_range_label == "2024-05-03_to_2024-05-07"
    assert digest.themes[0].theme == "Inference costs"
    assert digest.themes[0].related_subjects == ["Issue 1", "Issue 2"]
    assert digest.highlights == ["H1", "H2", "H3"]
    assert digest.action_items == ["Benchmark your stack"]


def test_prompt_contains_every_entry(make_provider) -> None:
    provider = make_provider("openai", [DIGEST_JSON])
    entries = [_entry("Issue 1", 3), _entry("Issue 2", 7)]

    DigestSynthesizer(ProviderChain([provider])).synthesize(entries)

    prompt = provider.calls[0]
    assert "Newsletter: Issue 1" in prompt
    assert "Newsletter: Issue 2" in prompt
    assert "Key Points: point one; point two" in prompt
    assert "Topics: ai, chips" in prompt
    assert "\n\n---\n\n" in prompt


def test_malformed_fields_degrade_to_empty(make_provider) -> None:
    provider = make_provider("openai", ['{"themes": "none", "highlights": 3}'])

    digest = DigestSynthesizer(ProviderChain([provider])).synthesize([_entry("Issue 1", 3)])

    assert digest.total_newsletters == 1
    assert digest.themes == []
    assert digest.highlights == []
    assert digest.action_items == []


def test_all_providers_failing_surfaces_unavailable(make_provider) -> None:
    chain = ProviderChain([make_provider("openai", ["not json"])])

    with pytest.raises(SummarizationUnavailable):
        DigestSynthesizer(chain).synthesize([_entry("Issue 1", 3)])


def test_storage_failure_still_returns_digest(make_provider) -> None:
    """Test a digest that cannot be stored is still handed back."""
    storage = MagicMock()
    storage.add_digest.side_effect = sqlite3.Error("database is locked")
    provider = make_provider("openai", [DIGEST_JSON])

    digest = DigestSynthesizer(ProviderChain([provider]), storage).synthesize(
        [_entry("Issue 1", 1)]
    )

    storage.add_digest.assert_called_once_with(digest)
    assert digest.total_newsletters == 1
    assert digest.themes[0].theme == "Inference costs"


def test_format_entry() -> None:
    entry = _entry("Issue 1", 3)

    assert format_entry(entry).splitlines() == [
        "Newsletter: Issue 1",
        "From: Latent Space",
        "Summary: Summary of Issue 1",
        "Key Points: point one; point two",
        "Topics: ai, chips",
    ]


def test_date_range_label_single_day() -> None:
    assert date_range_label([_entry("a", 9)]) == "2024-05-09_to_2024-05-09"
