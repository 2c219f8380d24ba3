"""Exception types raised across the ingestion and summarization pipeline."""

from typing import List


class LetterboxError(Exception):
    """Base class for all Letterbox daemon errors."""


class UnparsableContent(LetterboxError):
    """Raw input carried no recoverable subject, sender or body."""


class InvalidPayload(LetterboxError):
    """Inbound payload did not contain any email content."""


class ProviderFailure(LetterboxError):
    """A single AI provider failed to produce a usable response.

    Caught by the provider chain, which moves on to the next provider.
    """

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class MalformedProviderResponse(ProviderFailure):
    """Provider answered, but not with a JSON object."""


class SummarizationUnavailable(LetterboxError):
    """Every configured provider failed."""

    def __init__(self, failures: List[ProviderFailure]):
        self.failures = list(failures)
        if self.failures:
            detail = "; ".join(str(f) for f in self.failures)
        else:
            detail = "no providers configured"
        super().__init__(f"All AI providers failed ({detail})")


class FeedFetchFailure(LetterboxError):
    """A feed could not be fetched or processed."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch feed {url}: {reason}")
        self.url = url
        self.reason = reason
