"""Cross-newsletter digest: themes, highlights and action items from summaries."""

import logging
import sqlite3
from typing import List, Optional

from .models import Digest, SummarizedRecord, utc_now
from .observability import log as obs_log
from .providers import ProviderChain
from .schemas import DigestPayload
from .storage import Storage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at synthesizing information from multiple sources and "
    "identifying patterns. Always respond with valid JSON."
)

PROMPT_TEMPLATE = """Analyze these newsletter summaries and create a combined digest that identifies themes across all newsletters.

{entries}

Respond in JSON format with the following structure:
{{
  "themes": [
    {{
      "theme": "Theme name",
      "description": "Description of how this theme appears across newsletters",
      "relatedNewsletters": ["Newsletter subject 1", "Newsletter subject 2"]
    }}
  ],
  "highlights": ["Most important highlight 1", "Most important highlight 2", "Most important highlight 3"],
  "actionItems": ["Action item or recommendation 1", "Action item or recommendation 2"]
}}

Identify 2-4 major themes that appear across multiple newsletters. Extract the top 3-5 most important highlights and any actionable recommendations."""

ENTRY_SEPARATOR = "\n\n---\n\n"


def format_entry(entry: SummarizedRecord) -> str:
    return (
        f"Newsletter: {entry.record.subject}\n"
        f"From: {entry.record.sender_name}\n"
        f"Summary: {entry.summary.summary_text}\n"
        f"Key Points: {'; '.join(entry.summary.key_points)}\n"
        f"Topics: {', '.join(entry.summary.topics)}"
    )


def date_range_label(entries: List[SummarizedRecord]) -> str:
    """YYYY-MM-DD_to_YYYY-MM-DD over the entries' received dates."""
    if not entries:
        today = utc_now().strftime("%Y-%m-%d")
        return f"{today}_to_{today}"
    dates = [entry.record.received_at for entry in entries]
    return f"{min(dates).strftime('%Y-%m-%d')}_to_{max(dates).strftime('%Y-%m-%d')}"


class DigestSynthesizer:
    """Combine several summaries into one digest with a single provider call."""

    def __init__(self, chain: ProviderChain, storage: Optional[Storage] = None):
        self.chain = chain
        self.storage = storage

    def build_prompt(self, entries: List[SummarizedRecord]) -> str:
        return PROMPT_TEMPLATE.format(
            entries=ENTRY_SEPARATOR.join(format_entry(e) for e in entries)
        )

    def synthesize(self, entries: List[SummarizedRecord]) -> Digest:
        """Build a digest for the given summarized records.

        Empty input yields a zero-valued digest without any provider call.
        Malformed fields in the provider output become empty lists. A digest
        that cannot be persisted is logged and still returned.

        Raises:
            SummarizationUnavailable: If every provider failed
        """
        if not entries:
            return Digest(date_range_label=date_range_label([]), total_newsletters=0)

        data, provider = self.chain.complete_json(
            SYSTEM_PROMPT, self.build_prompt(entries), action="digest"
        )
        payload = DigestPayload.model_validate(data)

        digest = Digest(
            date_range_label=date_range_label(entries),
            total_newsletters=len(entries),
            themes=[theme.to_theme() for theme in payload.themes],
            highlights=payload.highlights,
            action_items=payload.action_items,
        )
        logger.info(
            f"Digest over {len(entries)} newsletters from {provider.name}: "
            f"{len(digest.themes)} themes, {len(digest.highlights)} highlights"
        )

        if self.storage is None:
            return digest

        try:
            self.storage.add_digest(digest)
        except sqlite3.Error as e:
            logger.error(f"Failed to store digest {digest.id}: {e}")
        else:
            obs_log(
                "digest.created",
                digest_id=digest.id,
                total_newsletters=digest.total_newsletters,
                provider=provider.name,
            )
        return digest
