"""Lightweight envelope extraction from raw header bytes.

Uses ``email.parser.BytesHeaderParser`` which parses *only* the headers
without walking the MIME body.  The backfill fetches ``BODY.PEEK[HEADER]``
and reconciles on these fields alone.
"""

from __future__ import annotations

import email.parser
import email.policy
import email.utils
from datetime import UTC, datetime
from typing import Any


def extract_envelope(raw_bytes: bytes) -> dict[str, Any]:
    """Extract envelope headers from raw RFC 822 bytes.

    Returns a dict with: subject, from, to, cc, date, message_id.
    ``date`` is a UTC datetime or ``None`` when missing or malformed.
    """
    parser = email.parser.BytesHeaderParser(policy=email.policy.default)
    headers = parser.parsebytes(raw_bytes)

    return {
        "message_id": str(headers.get("Message-ID", "")),
        "subject": str(headers.get("Subject", "")),
        "from": str(headers.get("From", "")),
        "to": _parse_address_list(headers.get("To")),
        "cc": _parse_address_list(headers.get("Cc")),
        "date": parse_date(headers.get("Date")),
    }


def parse_date(value: Any) -> datetime | None:
    """Parse an RFC 2822 Date header into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_address_list(header_value: Any) -> list[str]:
    """Parse an RFC 2822 address list into a list of email addresses."""
    if not header_value:
        return []
    return [addr for _, addr in email.utils.getaddresses([str(header_value)]) if addr]
