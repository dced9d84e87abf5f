"""Unit tests for Gmail payload parsing and HTML-to-text conversion"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime

import pytest
from conftest import b64url, gmail_message

from supportq.gmail.parser import (
    GmailParsingError,
    decode_base64url,
    encode_base64url,
    extract_body,
    header_lookup,
    parse_message,
    parse_received_at,
)
from supportq.utils.html import html_to_text


def test_parse_simple_message():
    parsed = parse_message(gmail_message("m1", "Please cancel order #1001", history_id="345"))

    assert parsed.id == "m1"
    assert parsed.thread_id == "thread-m1"
    assert parsed.history_id == "345"
    assert parsed.subject == "Order help"
    assert parsed.from_address == "Jane Doe <jane@example.com>"
    assert parsed.body == "Please cancel order #1001"
    assert parsed.body_hash == hashlib.sha256(b"Please cancel order #1001").hexdigest()
    assert parsed.labels == ["INBOX", "Label_support"]
    assert parsed.received_at == datetime(2024, 10, 14, 10, 0, tzinfo=UTC)


def test_content_joins_snippet_and_body():
    message = gmail_message("m1", "Body text")
    message["snippet"] = "Snippet text"

    assert parse_message(message).content == "Snippet text\n\nBody text"


def test_text_plain_preferred_in_nested_multipart():
    message = {
        "id": "m2",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/html", "body": {"data": b64url("<p>HTML</p>")}},
                        {"mimeType": "text/plain", "body": {"data": b64url("Plain\n")}},
                    ],
                },
                {"mimeType": "application/pdf", "body": {"attachmentId": "att-1"}},
            ],
        },
    }

    assert extract_body(message["payload"]) == "Plain"


def test_html_only_message_is_converted():
    payload = {
        "mimeType": "multipart/alternative",
        "parts": [{"mimeType": "text/html", "body": {"data": b64url("<p>Hi&nbsp;there</p>")}}],
    }

    assert extract_body(payload) == "Hi there"


def test_missing_body_is_empty_string():
    assert extract_body({"mimeType": "text/plain", "body": {"size": 0}}) == ""
    assert extract_body({}) == ""


def test_header_lookup_is_case_insensitive():
    headers = [{"name": "subject", "value": "Lower"}, {"name": "FROM", "value": "a@b.c"}]

    assert header_lookup(headers, "Subject") == "Lower"
    assert header_lookup(headers, "from") == "a@b.c"
    assert header_lookup(headers, "Date") is None


def test_message_without_id_is_rejected():
    with pytest.raises(GmailParsingError):
        parse_message({"payload": {}})


def test_malformed_date_falls_back_to_now():
    now = datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)

    assert parse_received_at("not a date", now=now) == now
    assert parse_received_at(None, now=now) == now


def test_date_header_converted_to_utc():
    parsed = parse_received_at("Tue, 15 Oct 2024 09:30:00 -0500")

    assert parsed == datetime(2024, 10, 15, 14, 30, tzinfo=UTC)


def test_base64url_without_padding():
    encoded = encode_base64url("héllo?".encode())

    assert "=" not in encoded
    assert decode_base64url(encoded) == "héllo?"


def test_invalid_base64_raises():
    with pytest.raises(GmailParsingError):
        decode_base64url("abcde")


class TestHtmlToText:
    def test_block_structure(self):
        html = "<p>Hello&nbsp;there</p><ul><li>One</li><li>Two</li></ul><br>Bye"

        assert html_to_text(html) == "Hello there\n\n- One\n- Two\nBye"

    def test_scripts_and_styles_removed(self):
        html = "<style>p {color: red}</style><div>Hi<script>alert(1)</script></div>"

        assert html_to_text(html) == "Hi"

    def test_entities_decoded(self):
        assert html_to_text("<p>Fish &amp; Chips &lt;3</p>") == "Fish & Chips <3"

    def test_blank_lines_collapse(self):
        assert html_to_text("<p>A</p><p></p><p></p><p>B</p>") == "A\n\nB"

    def test_empty_input(self):
        assert html_to_text("") == ""
