"""Notification fan-out to Slack and generic JSON webhooks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import httpx
import structlog

from .config import NotifierConfig
from .exceptions import NotificationError
from .models import EmailRecord

logger = structlog.get_logger()

WEBHOOK_EVENT = "InterestedLead"


@dataclass(frozen=True)
class NotificationSink:
    """One configured delivery target."""

    kind: Literal["slack", "webhook"]
    url: str


def build_payload(sink: NotificationSink, record: EmailRecord) -> dict[str, Any]:
    """Shape the event for the sink's expected format."""
    if sink.kind == "slack":
        return {
            "text": f"*Interested Email*\nSubject: {record.subject}\nFrom: {record.sender}",
        }
    return {"event": WEBHOOK_EVENT, "email": record.to_document()}


class NotificationFanout:
    """Best-effort, at-least-once delivery of events to every configured sink.

    A failing sink never prevents delivery to the others.
    """

    def __init__(self, config: NotifierConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None
        self.sinks: list[NotificationSink] = []
        if config.slack_webhook_url:
            self.sinks.append(NotificationSink("slack", config.slack_webhook_url))
        if config.webhook_url:
            self.sinks.append(NotificationSink("webhook", config.webhook_url))

    async def start(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        if not self.sinks:
            logger.warning("notifier_no_sinks_configured")
        logger.info("notifier_started", sinks=[sink.kind for sink in self.sinks])

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("notifier_stopped")

    async def send(self, sink: NotificationSink, payload: dict[str, Any]) -> None:
        """POST *payload* to *sink*. Raises :class:`NotificationError` on failure."""
        if self._client is None:
            raise AssertionError("Client not started")
        try:
            response = await self._client.post(sink.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"{sink.kind}: {type(exc).__name__}: {exc}") from exc

    async def notify(self, record: EmailRecord) -> int:
        """Emit one event per sink. Returns how many sinks accepted it."""
        delivered = 0
        for sink in self.sinks:
            try:
                await self.send(sink, build_payload(sink, record))
            except NotificationError as exc:
                logger.warning("notification_failed", uid=record.uid, sink=sink.kind, error=str(exc))
                continue
            delivered += 1
        logger.info("notifications_sent", uid=record.uid, delivered=delivered, sinks=len(self.sinks))
        return delivered
