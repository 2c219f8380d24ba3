"""Slack notification sink for freshly generated summaries."""

import logging
from typing import Any, Dict, Optional

import httpx

from .models import StoredRecord, Summary

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

SENTIMENT_MARKERS = {
    "positive": ":white_check_mark:",
    "neutral": ":heavy_minus_sign:",
    "negative": ":warning:",
}


class SlackNotifier:
    """Posts messages to one Slack channel via chat.postMessage.

    Best-effort: an unconfigured notifier or a failed post returns False
    and never raises.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        channel: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.bot_token = bot_token
        self.channel = channel
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.channel)

    def post(self, message: Dict[str, Any]) -> bool:
        """Send a message ({"text": ..., optional "blocks"}) to the channel."""
        if not self.configured:
            logger.debug("Slack bot token or channel not configured")
            return False

        payload = {"channel": self.channel, **message}
        headers = {"Authorization": f"Bearer {self.bot_token}"}
        try:
            if self._client is not None:
                response = self._client.post(
                    SLACK_POST_MESSAGE_URL, json=payload, headers=headers
                )
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        SLACK_POST_MESSAGE_URL, json=payload, headers=headers
                    )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Error sending Slack message: {e}")
            return False

        if body.get("ok") is not True:
            logger.warning(f"Slack rejected message: {body.get('error', 'unknown error')}")
            return False
        return True

    def format_summary(self, record: StoredRecord, summary: Summary) -> Dict[str, Any]:
        marker = SENTIMENT_MARKERS.get(summary.sentiment.value, ":heavy_minus_sign:")
        key_points = "\n".join(
            f"{i}. {point}" for i, point in enumerate(summary.key_points, start=1)
        )
        lines = [
            f":mailbox_with_mail: *{record.subject}*",
            f"From: {record.sender_name}",
            "",
            summary.summary_text,
        ]
        if key_points:
            lines += ["", key_points]
        lines += [
            "",
            f"{marker} {summary.sentiment.value} | {summary.read_time_minutes} min"
            + (f" | {', '.join(summary.topics)}" if summary.topics else ""),
        ]
        return {"text": "\n".join(lines)}
