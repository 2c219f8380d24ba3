"""Extraction of raw email text from inbound webhook bodies and chat events."""

import json
import logging
from email import policy
from email.parser import BytesParser
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import parse_qs

from .errors import InvalidPayload

logger = logging.getLogger(__name__)

JSON_CONTENT_KEYS = ("email", "raw", "text", "content")
JSON_ID_KEYS = ("id", "messageId", "externalId")
FORM_CONTENT_KEYS = ("email", "content", "file")

EMAIL_FILE_SUFFIX = ".eml"


def _as_text(body: Union[str, bytes]) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _first_value(data: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value)
    return None


def _parse_form(content_type: str, body: Union[str, bytes]) -> Dict[str, str]:
    """Field name -> text for urlencoded and multipart/form-data bodies."""
    if "application/x-www-form-urlencoded" in content_type:
        parsed = parse_qs(_as_text(body), keep_blank_values=False)
        return {key: values[0] for key, values in parsed.items() if values}

    raw = body if isinstance(body, bytes) else body.encode("utf-8")
    message = BytesParser(policy=policy.default).parsebytes(
        f"Content-Type: {content_type}\r\n\r\n".encode("utf-8") + raw
    )
    fields: Dict[str, str] = {}
    if not message.is_multipart():
        return fields
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        if not name or name in fields:
            continue
        payload = part.get_payload(decode=True) or b""
        charset = part.get_content_charset() or "utf-8"
        fields[name] = payload.decode(charset, errors="replace")
    return fields


def extract_raw_email(
    body: Union[str, bytes], content_type: str = ""
) -> Tuple[str, Optional[str]]:
    """Pull the raw email text (and optional external id) out of a webhook body.

    JSON bodies carry the email under email/raw/text/content and an id under
    id/messageId/externalId. Form bodies carry it in an email, content or
    file field. Anything else is taken as the raw email itself.

    Raises:
        InvalidPayload: If no email content can be found
    """
    content_type = (content_type or "").lower()

    if "application/json" in content_type:
        try:
            data = json.loads(_as_text(body) or "null")
        except json.JSONDecodeError as e:
            raise InvalidPayload(f"Invalid JSON payload: {e}") from e
        if not isinstance(data, dict):
            raise InvalidPayload("Missing email content in JSON payload")
        raw = _first_value(data, JSON_CONTENT_KEYS)
        if raw is None:
            raise InvalidPayload("Missing email content in JSON payload")
        return raw, _first_value(data, JSON_ID_KEYS)

    if "multipart/form-data" in content_type or (
        "application/x-www-form-urlencoded" in content_type
    ):
        raw = _first_value(_parse_form(content_type, body), FORM_CONTENT_KEYS)
        if raw is None:
            raise InvalidPayload("No email content found in form data")
        return raw, None

    raw = _as_text(body)
    if not raw.strip():
        raise InvalidPayload("Empty request body")
    return raw, None


def url_verification_challenge(payload: Dict[str, Any]) -> Optional[str]:
    """The challenge string to echo back for a Slack url_verification payload."""
    if payload.get("type") == "url_verification":
        return payload.get("challenge")
    return None


def is_email_integration_message(event: Dict[str, Any]) -> bool:
    """Whether a chat message looks like it came from an email integration."""
    bot_id = event.get("bot_id") or ""
    from_email_bot = (
        event.get("subtype") in ("file_share", "bot_message") or "email" in bot_id
    )

    text = event.get("text") or ""
    has_email_headers = "From:" in text and ("Subject:" in text or "To:" in text)

    return from_email_bot or has_email_headers


def is_own_message(event: Dict[str, Any], bot_marker: str) -> bool:
    bot_id = event.get("bot_id") or ""
    return bool(bot_marker) and bot_marker in bot_id


def extract_email_from_event(event: Dict[str, Any]) -> Optional[str]:
    """Email text carried by a chat message.

    Attached .eml files need an authenticated download, so the message text
    is used; the attachment is only logged.
    """
    for attachment in event.get("files") or []:
        name = attachment.get("name") or ""
        if (
            attachment.get("filetype") == "email"
            or name.endswith(EMAIL_FILE_SUFFIX)
            or "message/rfc822" in (attachment.get("mimetype") or "")
        ):
            logger.info(f"Found email file attachment: {name}")
            break

    text = event.get("text")
    return text if text else None


def message_event(
    payload: Dict[str, Any], channel: Optional[str], bot_marker: str = ""
) -> Optional[Dict[str, Any]]:
    """The message event of an event_callback payload worth ingesting, if any.

    Only message events in the configured channel qualify; the bot's own
    messages are skipped to avoid loops.
    """
    if payload.get("type") != "event_callback":
        return None
    event = payload.get("event") or {}
    if event.get("type") != "message":
        return None
    if channel and event.get("channel") != channel:
        return None
    if is_own_message(event, bot_marker):
        return None
    return event
