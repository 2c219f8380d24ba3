"""Unit tests for inbound webhook and chat event extraction."""

import json

import pytest

from letterbox_daemon.errors import InvalidPayload
from letterbox_daemon.inbound import (
    extract_email_from_event,
    extract_raw_email,
    is_email_integration_message,
    is_own_message,
    message_event,
    url_verification_challenge,
)

RAW = "From: Crew <crew@morningbrew.com>\nSubject: Hi\n\nBody"


def test_json_body_with_email_and_id() -> None:
    body = json.dumps({"email": RAW, "messageId": "msg-1"})

    raw, external_id = extract_raw_email(body, "application/json; charset=utf-8")

    assert raw == RAW
    assert external_id == "msg-1"


def test_json_body_key_precedence() -> None:
    """Test email wins over raw/text/content, id over messageId."""
    body = json.dumps({"content": "c", "raw": "r", "id": 7, "externalId": "x"})

    raw, external_id = extract_raw_email(body, "application/json")

    assert raw == "r"
    assert external_id == "7"


@pytest.mark.parametrize(
    "body",
    ["{not json", json.dumps({"subject": "no body"}), json.dumps(["a", "b"])],
)
def test_json_body_without_content_is_invalid(body) -> None:
    with pytest.raises(InvalidPayload):
        extract_raw_email(body, "application/json")


def test_urlencoded_form() -> None:
    raw, external_id = extract_raw_email(
        "content=Subject%3A+Hi%0A%0ABody&other=1",
        "application/x-www-form-urlencoded",
    )

    assert raw == "Subject: Hi\n\nBody"
    assert external_id is None


def test_multipart_form_file_field() -> None:
    boundary = "XyZ"
    body = (
        f"--{boundary}\r\n"
        'Content-Disposition: form-data; name="note"\r\n\r\n'
        "ignored\r\n"
        f"--{boundary}\r\n"
        'Content-Disposition: form-data; name="file"; filename="msg.eml"\r\n'
        "Content-Type: text/plain\r\n\r\n"
        "Subject: Attached\r\n\r\nHello\r\n"
        f"--{boundary}--\r\n"
    ).encode("utf-8")

    raw, _ = extract_raw_email(body, f"multipart/form-data; boundary={boundary}")

    assert "Subject: Attached" in raw
    assert "Hello" in raw


def test_form_without_email_field_is_invalid() -> None:
    with pytest.raises(InvalidPayload):
        extract_raw_email("other=1", "application/x-www-form-urlencoded")


def test_raw_body_is_the_email() -> None:
    raw, external_id = extract_raw_email(RAW.encode("utf-8"), "text/plain")

    assert raw == RAW
    assert external_id is None


def test_empty_raw_body_is_invalid() -> None:
    with pytest.raises(InvalidPayload):
        extract_raw_email("   ", "")


def test_url_verification_challenge() -> None:
    assert url_verification_challenge({"type": "url_verification", "challenge": "abc"}) == "abc"
    assert url_verification_challenge({"type": "event_callback"}) is None


def test_email_integration_detection() -> None:
    assert is_email_integration_message({"subtype": "file_share"})
    assert is_email_integration_message({"bot_id": "B_email_bridge"})
    assert is_email_integration_message({"text": "From: a@b.com\nSubject: Hi"})
    assert not is_email_integration_message({"text": "lunch?"})


def test_own_message_detection() -> None:
    assert is_own_message({"bot_id": "B-newsletter-1"}, "newsletter")
    assert not is_own_message({"bot_id": "B-other"}, "newsletter")
    assert not is_own_message({"bot_id": "B-newsletter-1"}, "")


def test_extract_email_from_event_uses_text() -> None:
    event = {"text": RAW, "files": [{"name": "msg.eml", "filetype": "email"}]}

    assert extract_email_from_event(event) == RAW
    assert extract_email_from_event({"files": []}) is None


def test_message_event_filters() -> None:
    """Test only channel messages not sent by our own bot are returned."""
    event = {"type": "message", "channel": "C1", "text": RAW, "ts": "1.2"}
    payload = {"type": "event_callback", "event": event}

    assert message_event(payload, "C1", "newsletter") == event
    assert message_event(payload, "C2", "newsletter") is None
    assert message_event({"type": "url_verification"}, "C1") is None
    assert message_event(
        {"type": "event_callback", "event": {"type": "reaction_added"}}, "C1"
    ) is None

    own = dict(event, bot_id="B-newsletter")
    assert message_event({"type": "event_callback", "event": own}, "C1", "newsletter") is None
