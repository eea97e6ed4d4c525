"""MIME parser: raw RFC 822 bytes → EmailRecord."""

from __future__ import annotations

import email
import email.message
import email.policy
from datetime import UTC, datetime

import html2text

from .envelope import extract_envelope, parse_date
from .exceptions import ParseError
from .models import EmailRecord, FetchedEmail


def html_to_text(body_html: str) -> str:
    """Render an HTML body as plain text for messages without a text/plain part."""
    converter = html2text.HTML2Text()
    converter.ignore_images = True
    converter.ignore_emphasis = True
    converter.body_width = 0  # no re-wrapping
    lines = (line.rstrip() for line in converter.handle(body_html).splitlines())
    return "\n".join(line for line in lines if line)


class MimeParser:
    """Stateless parser bound to one account."""

    def __init__(self, account_id: str) -> None:
        self._account_id = account_id

    def parse(self, fetched: FetchedEmail, folder: str) -> EmailRecord:
        """Full parse of a complete message. Raises :class:`ParseError`."""
        try:
            msg = email.message_from_bytes(fetched.raw_bytes, policy=email.policy.default)
            body_text, body_html = self._extract_bodies(msg)
            subject = str(msg.get("Subject", ""))
            sender = str(msg.get("From", ""))
            sent_at = parse_date(msg.get("Date"))
        except Exception as exc:
            raise ParseError(f"uid {fetched.uid}: {exc}") from exc

        if body_text is None and body_html is not None:
            body_text = html_to_text(body_html)

        return EmailRecord(
            uid=str(fetched.uid),
            subject=subject,
            body=body_text or "",
            account_id=self._account_id,
            folder=folder,
            date=sent_at or fetched.internal_date or datetime.now(UTC),
            sender=sender,
        )

    def parse_headers(self, fetched: FetchedEmail, folder: str) -> EmailRecord:
        """Header-only parse for backfill reconciliation (empty body)."""
        try:
            envelope = extract_envelope(fetched.raw_bytes)
        except Exception as exc:
            raise ParseError(f"uid {fetched.uid}: {exc}") from exc

        return EmailRecord(
            uid=str(fetched.uid),
            subject=envelope["subject"],
            account_id=self._account_id,
            folder=folder,
            date=envelope["date"] or fetched.internal_date or datetime.now(UTC),
            sender=envelope["from"],
        )

    def _extract_bodies(self, msg: email.message.Message) -> tuple[str | None, str | None]:
        """Walk MIME parts and return (plain_text, html_text)."""
        body_text: str | None = None
        body_html: str | None = None

        if not msg.is_multipart():
            content_type = msg.get_content_type()
            payload = msg.get_content()
            if content_type == "text/plain" and isinstance(payload, str):
                body_text = payload
            elif content_type == "text/html" and isinstance(payload, str):
                body_html = payload
            return body_text, body_html

        for part in msg.walk():
            # Multipart containers have no content of their own
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue
            payload = part.get_content()
            if content_type == "text/plain" and isinstance(payload, str) and body_text is None:
                body_text = payload
            elif content_type == "text/html" and isinstance(payload, str) and body_html is None:
                body_html = payload

        return body_text, body_html
