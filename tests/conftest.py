"""Shared test fixtures for the onebox-sync test suite."""

from __future__ import annotations

import asyncio
import copy
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from onebox_sync.config import (
    ClassifierConfig,
    ElasticsearchConfig,
    ImapConfig,
    NotifierConfig,
    PipelineConfig,
    SessionConfig,
)
from onebox_sync.exceptions import NetworkError
from onebox_sync.imap_client import IdleEvents
from onebox_sync.models import ClassificationLabel, EmailRecord, FetchedEmail, FolderStatus

# ------------------------------------------------------------------
# Config fixtures
# ------------------------------------------------------------------


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="sdr@test.com",
        password="testpass",
        mailbox="INBOX",
        timeout_seconds=5.0,
    )


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        backfill_days=30,
        backfill_mode="reconcile",
        watchdog_interval_seconds=3600,
        idle_check_seconds=0.01,
        reconnect_initial_seconds=0.01,
        reconnect_max_seconds=0.05,
        reconnect_multiplier=2.0,
    )


@pytest.fixture
def es_config() -> ElasticsearchConfig:
    return ElasticsearchConfig(url="http://es.test:9200", index="emails")


@pytest.fixture
def classifier_config() -> ClassifierConfig:
    return ClassifierConfig(
        api_url="http://classifier.test/v1/classify",
        timeout_seconds=2.0,
        max_attempts=2,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.02,
    )


@pytest.fixture
def notifier_config() -> NotifierConfig:
    return NotifierConfig(
        slack_webhook_url="http://slack.test/hook",
        webhook_url="http://webhook.test/lead",
    )


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(max_concurrency=4)


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "Lead <lead@example.com>",
    to_addr: str = "sdr@test.com",
    body: str = "Hello, World!",
    message_id: str = "<test-001@example.com>",
    date: str | None = "Sun, 01 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = message_id
    if date:
        msg["Date"] = date
    return msg.as_bytes()


def build_html_email(*, body_html: str = "<p>Hello <b>there</b></p>") -> bytes:
    msg = MIMEText(body_html, "html")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "sdr@test.com"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "sdr@test.com"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return build_plain_email()


@pytest.fixture
def record_factory():
    """Factory to create EmailRecord instances with overrides."""

    def _make(uid: str = "117", **overrides: Any) -> EmailRecord:
        defaults: dict[str, Any] = dict(
            uid=uid,
            subject=f"Subject {uid}",
            body=f"body of {uid}",
            account_id="sdr@test.com",
            folder="INBOX",
            sender="Lead <lead@example.com>",
        )
        defaults.update(overrides)
        return EmailRecord(**defaults)

    return _make


# ------------------------------------------------------------------
# Fakes for external collaborators
# ------------------------------------------------------------------


class _FakeIndices:
    def __init__(self, es: InMemoryElasticsearch) -> None:
        self._es = es

    async def exists(self, index: str) -> bool:
        return index in self._es.created

    async def create(self, index: str, mappings: dict) -> dict:
        self._es.created[index] = mappings
        return {"acknowledged": True}

    async def refresh(self, index: str) -> dict:
        self._es.refreshes += 1
        self._es.visible = copy.deepcopy(self._es.docs)
        return {}


class InMemoryElasticsearch:
    """Just enough of AsyncElasticsearch for the record store.

    Writes land in ``docs``; only ``refresh`` makes them ``visible``.
    """

    def __init__(self) -> None:
        self.created: dict[str, dict] = {}
        self.docs: dict[str, dict] = {}
        self.visible: dict[str, dict] = {}
        self.refreshes = 0
        self.fail_full_writes: set[str] = set()
        self.fail_partial_writes: set[str] = set()
        self.indices = _FakeIndices(self)
        self.closed = False

    async def update(self, index: str, id: str, doc: dict, doc_as_upsert: bool) -> dict:
        full = "subject" in doc
        if (full and id in self.fail_full_writes) or (not full and id in self.fail_partial_writes):
            raise ESConnectionError("connection refused")
        existing = self.docs.get(id)
        if existing is None:
            assert doc_as_upsert
            self.docs[id] = dict(doc)
        else:
            existing.update(doc)
        return {"result": "updated"}

    async def search(self, index: str, body: dict) -> dict:
        hits = [{"_id": k, "_source": v} for k, v in self.visible.items()]
        return {"hits": {"total": {"value": len(hits)}, "hits": hits}}

    async def close(self) -> None:
        self.closed = True


class FakeClassifier:
    """Returns a label per body text; Exception values are raised."""

    def __init__(self, by_text: dict[str, Any] | None = None, default: Any = ClassificationLabel.SPAM):
        self.by_text = by_text or {}
        self.default = default
        self.calls: list[str] = []

    async def classify(self, text: str) -> Any:
        self.calls.append(text)
        await asyncio.sleep(0)
        value = self.by_text.get(text, self.default)
        if isinstance(value, Exception):
            raise value
        return value


class FakeNotifier:
    def __init__(self, sinks: int = 2) -> None:
        self.sinks = sinks
        self.records: list[EmailRecord] = []

    async def notify(self, record: EmailRecord) -> int:
        self.records.append(record)
        return self.sinks


@pytest.fixture
def fake_es() -> InMemoryElasticsearch:
    return InMemoryElasticsearch()


class FakeImapClient:
    """Scripted stand-in for AsyncImapClient.

    ``idle_script`` drives what each IDLE wait observes:

    * ``dict[int, bytes]``: new messages arrive (EXISTS push)
    * ``Exception``: raised from the wait (connection drop)
    * ``IdleEvents``: returned as is
    * ``"tick"``: the wait times out with no pushes
    * a callable: invoked, and its result handled as the step

    When the script runs out the shutdown event is set.
    """

    def __init__(
        self,
        *,
        messages: dict[int, bytes] | None = None,
        uidvalidity: int = 1,
        idle_script: list[Any] | None = None,
        supports_idle: bool = True,
        login_error: Exception | None = None,
        connect_failures: int = 0,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        self.messages: dict[int, bytes] = dict(messages or {})
        self.uidvalidity = uidvalidity
        self.idle_script = list(idle_script or [])
        self._supports_idle = supports_idle
        self.login_error = login_error
        self.connect_failures = connect_failures
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.session = None  # set by tests that inspect session state during calls

        self.calls: list[str] = []
        self.connected = False
        self.idling = False
        self.noop_observations: list[tuple[str, bool]] = []

    async def connect(self) -> None:
        self.calls.append("connect")
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise NetworkError("connection refused")
        self.connected = True

    async def login(self) -> None:
        self.calls.append("login")
        if self.login_error is not None:
            raise self.login_error

    async def supports_idle(self) -> bool:
        return self._supports_idle

    async def select_folder(self, folder: str) -> FolderStatus:
        self.calls.append(f"select:{folder}")
        uidnext = max(self.messages, default=0) + 1
        return FolderStatus(uidvalidity=self.uidvalidity, uidnext=uidnext, exists=len(self.messages))

    async def search_since(self, since) -> list[int]:
        self.calls.append("search_since")
        return sorted(self.messages)

    async def search_after(self, last_uid: int) -> list[int]:
        self.calls.append(f"search_after:{last_uid}")
        return sorted(uid for uid in self.messages if uid > last_uid)

    async def fetch_message(self, uid: int, *, headers_only: bool = False, mark_seen: bool = False):
        self.calls.append(f"fetch:{uid}")
        await asyncio.sleep(0)
        raw = self.messages.get(uid)
        if raw is None:
            return None
        return FetchedEmail(uid=uid, raw_bytes=raw)

    async def idle_start(self) -> None:
        self.calls.append("idle")
        self.idling = True

    async def idle_wait(self, timeout: float) -> IdleEvents:
        self.calls.append("idle_wait")
        await asyncio.sleep(0)
        if not self.idle_script:
            self.shutdown_event.set()
            return IdleEvents()
        step = self.idle_script.pop(0)
        if callable(step):
            step = step()
        if isinstance(step, Exception):
            self.connected = False
            raise step
        if isinstance(step, dict):
            self.messages.update(step)
            return IdleEvents(new_mail=True)
        if isinstance(step, IdleEvents):
            return step
        return IdleEvents()

    async def idle_done(self) -> IdleEvents:
        self.calls.append("idle_done")
        self.idling = False
        return IdleEvents()

    async def noop(self) -> None:
        self.calls.append("noop")
        if self.session is not None:
            self.noop_observations.append(
                (self.session.state.value, self.session.fetch_in_flight)
            )

    async def disconnect(self) -> None:
        self.calls.append("disconnect")
        self.connected = False
        self.idling = False
