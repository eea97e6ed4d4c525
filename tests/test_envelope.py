"""Tests for onebox_sync.envelope."""

from __future__ import annotations

from datetime import datetime, timezone

from onebox_sync.envelope import extract_envelope, parse_date
from tests.conftest import build_plain_email


class TestExtractEnvelope:
    def test_basic_fields(self):
        raw = build_plain_email(
            subject="Re: pricing",
            from_addr="Jane Lead <jane@example.com>",
            to_addr="sdr@test.com, other@test.com",
            message_id="<abc@example.com>",
        )
        env = extract_envelope(raw)
        assert env["subject"] == "Re: pricing"
        assert env["from"] == "Jane Lead <jane@example.com>"
        assert env["to"] == ["sdr@test.com", "other@test.com"]
        assert env["cc"] == []
        assert env["message_id"] == "<abc@example.com>"

    def test_date_normalised_to_utc(self):
        raw = build_plain_email(date="Sun, 01 Jun 2025 14:30:00 +0200")
        env = extract_envelope(raw)
        assert env["date"] == datetime(2025, 6, 1, 12, 30, tzinfo=timezone.utc)

    def test_missing_date(self):
        env = extract_envelope(build_plain_email(date=None))
        assert env["date"] is None

    def test_headers_only_input(self):
        raw = b"Subject: Out of office\r\nFrom: bot@example.com\r\n\r\n"
        env = extract_envelope(raw)
        assert env["subject"] == "Out of office"
        assert env["from"] == "bot@example.com"

    def test_encoded_subject_is_decoded(self):
        raw = b"Subject: =?utf-8?b?SGVsbG8gV8O2cmxk?=\r\n\r\n"
        assert extract_envelope(raw)["subject"] == "Hello Wörld"


class TestParseDate:
    def test_garbage_returns_none(self):
        assert parse_date("not a date") is None

    def test_empty_returns_none(self):
        assert parse_date("") is None
        assert parse_date(None) is None

    def test_naive_date_assumed_utc(self):
        parsed = parse_date("Sun, 01 Jun 2025 12:00:00 -0000")
        assert parsed == datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
