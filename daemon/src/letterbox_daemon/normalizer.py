"""Normalization of raw emails, forwarded text and RSS entries into ParsedItems.

Three input shapes end up as the same ParsedItem:

- Full MIME email text (webhook pushes, chat file shares)
- Forwarded plain text pasted into chat, with loose ``Subject:``/``From:`` lines
- RSS entries, which are first rendered as email-shaped text so they get a
  content identity like every other item
"""

import email
import logging
import re
from datetime import datetime, timezone
from email import policy
from email.errors import MessageError
from email.message import EmailMessage
from email.utils import format_datetime, parseaddr, parsedate_to_datetime
from typing import Optional, Tuple, Union

from bs4 import BeautifulSoup

from .errors import UnparsableContent
from .identity import content_id_for, is_newsletter_like
from .models import FeedItem, FeedSource, ParsedItem, Sender, utc_now

logger = logging.getLogger(__name__)

FORWARD_SUBJECT_MARKERS = ("fwd:", "fw:", "forwarded")
FORWARD_BODY_MARKERS = (
    "forwarded message",
    "---------- forwarded",
    "begin forwarded message",
    "forwarded this email",
)

# Local parts that say nothing about who sent the mail
GENERIC_LOCAL_PARTS = {"newsletter", "hello", "team"}

HEADER_SCAN_LINES = 20
FEED_EMAIL_DOMAIN = "rss.feed"
DEGRADED_SUBJECT = "Email (unparsed)"
DEGRADED_SENDER = Sender(name="Unknown", email="unknown@example.com")

# Tried in order against "<plain text>\n<html>"; first match wins
ORIGINAL_SENDER_PATTERNS = (
    # From: Jane Doe <jane@example.com>
    re.compile(r"From:[ \t]*([^<\r\n]+?)[ \t]*<([^>\r\n]+)>", re.IGNORECASE),
    # From: jane@example.com
    re.compile(
        r"From:\s*([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})", re.IGNORECASE
    ),
    # From:</strong> Jane Doe &lt;jane@example.com&gt;
    re.compile(r"From:</?\w+>\s*([^&<]+?)\s*&lt;([^&>]+)&gt;", re.IGNORECASE),
)

_WHITESPACE_RE = re.compile(r"\s+")
_HTML_HINT_RE = re.compile(r"<[a-zA-Z/!][^>]*>")


def capitalize_words(text: str) -> str:
    """Capitalize every whitespace-separated token: first upper, rest lower."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def display_name_from_email(address: str) -> str:
    """Derive a readable sender name from a bare email address.

    newsletter@morningbrew.com -> "Morningbrew"
    alex.smith@example.com -> "Alex Smith"
    """
    local_part, sep, domain = address.partition("@")
    if not sep or not domain:
        return address

    if local_part.lower() in GENERIC_LOCAL_PARTS:
        return capitalize_words(domain.split(".")[0])

    return capitalize_words(re.sub(r"[._-]", " ", local_part))


def strip_html(markup: str) -> str:
    """Reduce HTML to its visible text with whitespace collapsed."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "head", "noscript"]):
        tag.decompose()
    text = soup.get_text(" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def is_forwarded(subject: str, text: str, html_body: str) -> bool:
    """Detect a forwarded message from its subject or either body."""
    subject = subject.lower()
    if any(marker in subject for marker in FORWARD_SUBJECT_MARKERS):
        return True

    for body in (text.lower(), html_body.lower()):
        if any(marker in body for marker in FORWARD_BODY_MARKERS):
            return True
    return False


def extract_original_sender(text: str, html_body: str) -> Optional[Sender]:
    """Recover the original sender embedded in a forwarded message body."""
    search_text = f"{text}\n{html_body}"

    for pattern in ORIGINAL_SENDER_PATTERNS:
        match = pattern.search(search_text)
        if not match:
            continue
        if pattern.groups == 2:
            return Sender(name=match.group(1).strip(), email=match.group(2).strip())
        address = match.group(1).strip()
        return Sender(name=display_name_from_email(address), email=address)

    return None


def parse_date(value: str) -> Optional[datetime]:
    """Parse an RFC 2822 or ISO-8601 date into an aware datetime."""
    value = (value or "").strip()
    if not value:
        return None

    parsed = None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _message_bodies(msg: EmailMessage) -> Tuple[str, str]:
    """Return (plain text, html) bodies of a parsed message."""
    bodies = []
    for subtype in ("plain", "html"):
        part = msg.get_body(preferencelist=(subtype,))
        content = ""
        if part is not None:
            try:
                content = part.get_content()
            except (LookupError, UnicodeError) as e:
                logger.debug(f"Could not decode {subtype} part: {e}")
                payload = part.get_payload(decode=True) or b""
                content = payload.decode("utf-8", errors="replace")
        bodies.append(content if isinstance(content, str) else "")
    return bodies[0], bodies[1]


def parse_raw_email(raw: str) -> ParsedItem:
    """Parse a full MIME email into a ParsedItem.

    Args:
        raw: Raw email text including headers

    Returns:
        ParsedItem with envelope, body and forwarding details

    Raises:
        UnparsableContent: If the text has neither a Subject nor a From header
    """
    try:
        msg = email.message_from_string(raw, policy=policy.default)
        subject = str(msg.get("subject") or "").strip()
        from_header = str(msg.get("from") or "").strip()
        date_header = str(msg.get("date") or "")
        message_id = str(msg.get("message-id") or "").strip() or None
        text, html_body = _message_bodies(msg)
    except (MessageError, TypeError, ValueError, IndexError, LookupError) as e:
        raise UnparsableContent(f"MIME parsing failed: {e}") from e

    if not subject and not from_header:
        raise UnparsableContent("No Subject or From header found")

    sender_name, sender_email = parseaddr(from_header)
    if sender_email and not sender_name:
        sender_name = display_name_from_email(sender_email)

    if text.strip():
        parsed_body = text
    elif html_body:
        parsed_body = strip_html(html_body)
    else:
        parsed_body = ""

    forwarded = is_forwarded(subject, text, html_body)
    original_sender = extract_original_sender(text, html_body) if forwarded else None

    return ParsedItem(
        content_id=content_id_for(raw),
        external_id=message_id,
        subject=subject,
        sender_name=sender_name,
        sender_email=sender_email,
        received_at=parse_date(date_header) or utc_now(),
        raw_body=raw,
        parsed_body=parsed_body,
        is_forwarded=forwarded,
        original_sender=original_sender,
        is_newsletter_like=is_newsletter_like(subject, parsed_body, sender_email),
    )


def _split_from_line(from_line: str) -> Tuple[str, str]:
    match = re.match(r"(.*?)<(.*?)>", from_line)
    if match:
        name, address = match.group(1).strip(), match.group(2).strip()
    else:
        name, address = "", from_line.strip()
    if address and not name:
        name = display_name_from_email(address)
    return name, address


def parse_forwarded_email(text: str) -> Optional[ParsedItem]:
    """Parse loosely formatted forwarded text (e.g. pasted into chat).

    Looks for Subject:/From:/Date: lines near the top, then falls back to
    "[Subject] ... <email>" or "Subject ... <email>" on the first line.

    Returns:
        ParsedItem, or None if neither subject nor sender email was found
    """
    lines = text.split("\n")
    subject = ""
    sender_name = ""
    sender_email = ""
    received_at = None

    for line in lines[:HEADER_SCAN_LINES]:
        line = line.strip()
        if line.startswith("Subject:"):
            subject = line[len("Subject:") :].strip()
        elif line.startswith("From:"):
            sender_name, sender_email = _split_from_line(line[len("From:") :])
        elif line.startswith("Date:"):
            received_at = parse_date(line[len("Date:") :]) or received_at

    if not subject or not sender_email:
        first_line = lines[0].strip() if lines else ""
        match = re.search(r"\[(.*?)\].*?<(.*?)>", first_line) or re.search(
            r"(.*?)<(.*?)>", first_line
        )
        if match:
            subject = match.group(1).strip()
            sender_email = match.group(2).strip()
            sender_name = display_name_from_email(sender_email)

    if not subject and not sender_email:
        return None

    return ParsedItem(
        content_id=content_id_for(text),
        subject=subject,
        sender_name=sender_name,
        sender_email=sender_email,
        received_at=received_at or utc_now(),
        raw_body=text,
        parsed_body=text,
        is_forwarded=True,
        original_sender=Sender(name=sender_name, email=sender_email)
        if sender_name
        else None,
        is_newsletter_like=is_newsletter_like(subject, text, sender_email),
    )


def normalize(raw: Union[str, bytes]) -> ParsedItem:
    """Normalize raw email-like input, trying MIME first, then forwarded text.

    Raises:
        UnparsableContent: If neither path recovers a subject or sender.
            Callers substitute degraded_item(raw).
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    try:
        return parse_raw_email(raw)
    except UnparsableContent as e:
        logger.debug(f"Not a MIME email ({e}), trying forwarded text format")

    item = parse_forwarded_email(raw)
    if item is None:
        raise UnparsableContent("No subject or sender could be recovered")
    return item


def degraded_item(raw: Union[str, bytes]) -> ParsedItem:
    """Minimal placeholder item for input nothing could be recovered from."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    return ParsedItem(
        content_id=content_id_for(raw),
        subject=DEGRADED_SUBJECT,
        sender_name=DEGRADED_SENDER.name,
        sender_email=DEGRADED_SENDER.email,
        raw_body=raw,
        parsed_body=raw,
        is_newsletter_like=is_newsletter_like("", raw, ""),
    )


def feed_sender_email(feed_name: str) -> str:
    """Synthetic sender address for a feed: "Latent Space" -> latent.space@rss.feed"""
    return f"{_WHITESPACE_RE.sub('.', feed_name.strip().lower())}@{FEED_EMAIL_DOMAIN}"


def richest_content(item: FeedItem) -> str:
    """Best available body of a feed item (the fetcher already prefers
    content:encoded > content > description)."""
    return item.content or item.content_snippet or ""


def rss_item_to_email(item: FeedItem, feed_name: str, feed_email: str) -> str:
    """Render a feed item as email-shaped raw text.

    The Date line is omitted when the item has no publish date so that the
    rendering, and therefore the content identity, stays stable across fetches.
    """
    headers = [
        f"From: {feed_name} <{feed_email}>",
        f"Subject: {item.title}",
    ]
    if item.published_at:
        published = item.published_at.astimezone(timezone.utc)
        headers.append(f"Date: {format_datetime(published, usegmt=True)}")
    headers.append("Content-Type: text/html; charset=utf-8")

    return (
        "\n".join(headers)
        + "\n\n"
        + f"{richest_content(item)}\n\n"
        + "---\n"
        + "This is an automated RSS-to-email conversion.\n"
        + source_marker(item.link)
        + f"Unsubscribe: {feed_email}\n"
    )


def source_marker(link: str) -> str:
    """The line linking a converted feed item back to its source.

    It ends with the line break so that a link which is a prefix of another
    link never matches the longer one.
    """
    return f"Original source: {link}\n"


def normalize_feed_item(item: FeedItem, feed: FeedSource) -> ParsedItem:
    """Build a ParsedItem for a feed entry.

    Identity comes from the synthesized email text; subject and sender come
    straight from the item and feed rather than being re-parsed.
    """
    sender_email = feed_sender_email(feed.name)
    raw = rss_item_to_email(item, feed.name, sender_email)
    body = richest_content(item)
    parsed_body = strip_html(body) if _HTML_HINT_RE.search(body) else body.strip()

    return ParsedItem(
        content_id=content_id_for(raw),
        external_id=item.guid or item.link or None,
        subject=item.title,
        sender_name=feed.name,
        sender_email=sender_email,
        received_at=item.published_at or utc_now(),
        raw_body=raw,
        parsed_body=parsed_body,
        is_newsletter_like=is_newsletter_like(item.title, raw, sender_email),
    )
