"""Content identity and newsletter classification."""

import struct
from typing import Union

NEWSLETTER_KEYWORDS = (
    "newsletter",
    "digest",
    "weekly",
    "update",
    "roundup",
    "insights",
    "report",
    "briefing",
    "unsubscribe",
    "subscription",
    "subscribe",
    "preferences",
)

NEWSLETTER_PLATFORMS = (
    "substack.com",
    "beehiiv.com",
    "buttondown.email",
    "mailchimp.com",
    "convertkit.com",
    "revue.com",
    "ghost.org",
)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _utf16_units(text: str):
    data = text.encode("utf-16-le", errors="surrogatepass")
    return struct.unpack(f"<{len(data) // 2}H", data)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def content_id_for(raw: Union[str, bytes]) -> str:
    """Derive the deterministic content identity of a raw body.

    32-bit rolling hash (h = h * 31 + unit) over UTF-16 code units, wrapped
    to signed 32 bits, then the absolute value in base 36 padded to 8 chars.
    Not collision resistant; only used as a cheap stable fingerprint.

    Args:
        raw: Raw source text, or bytes decoded as UTF-8

    Returns:
        Lowercase base-36 identity, at least 8 characters long
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    h = 0
    for unit in _utf16_units(raw):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000

    return _to_base36(abs(h)).rjust(8, "0")


def sender_domain(sender_email: str) -> str:
    """Lower-cased domain part of an address, or '' when there is none."""
    if "@" not in sender_email:
        return ""
    return sender_email.rsplit("@", 1)[1].strip().strip(">").lower()


def is_newsletter_like(subject: str, body: str, sender_email: str = "") -> bool:
    """Classify an item as newsletter-like.

    True when subject or body mentions a newsletter keyword, or the sender
    is on a known newsletter platform. Absence of evidence yields False.
    """
    subject = (subject or "").lower()
    body = (body or "").lower()

    for keyword in NEWSLETTER_KEYWORDS:
        if keyword in subject or keyword in body:
            return True

    domain = sender_domain(sender_email or "")
    if domain:
        for platform in NEWSLETTER_PLATFORMS:
            if domain == platform or domain.endswith("." + platform):
                return True

    return False
