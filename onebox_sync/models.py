"""Data models for the mailbox sync pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """Connection state of the mailbox session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    FOLDER_SELECTED = "folder_selected"
    IDLE = "idle"
    BUSY = "busy"
    RECONNECTING = "reconnecting"


class ClassificationLabel(str, Enum):
    """Closed set of labels the classifier may assign."""

    INTERESTED = "Interested"
    MEETING_BOOKED = "Meeting Booked"
    NOT_INTERESTED = "Not Interested"
    SPAM = "Spam"
    OUT_OF_OFFICE = "Out of Office"

    @classmethod
    def parse(cls, value: Any) -> ClassificationLabel | None:
        """Return the matching label, or ``None`` for anything outside the set."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


DEFAULT_LABEL = ClassificationLabel.NOT_INTERESTED
TRIGGER_LABEL = ClassificationLabel.INTERESTED


@dataclass(frozen=True)
class RawMessageHandle:
    """Server-assigned UID plus the folder it belongs to."""

    uid: int
    folder: str


@dataclass(frozen=True)
class FolderStatus:
    """Mailbox counters returned by SELECT."""

    uidvalidity: int | None
    uidnext: int | None
    exists: int


@dataclass
class FetchedEmail:
    """Raw email data fetched from IMAP."""

    uid: int
    raw_bytes: bytes
    internal_date: datetime | None = None


class EmailRecord(BaseModel):
    """The durable unit stored in the record store, keyed by ``uid``."""

    uid: str = Field(description="IMAP UID (never the sequence number)")
    subject: str = Field(default="", description="Decoded Subject header")
    body: str = Field(default="", description="Plain-text body")
    account_id: str = Field(description="Mailbox account the message belongs to")
    folder: str = Field(description="IMAP folder the message was read from")
    date: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Received timestamp (UTC)",
    )
    sender: str = Field(default="", description="Raw From header")
    ai_category: ClassificationLabel | None = Field(
        default=None,
        description="Classifier label, absent until annotated",
    )

    def to_document(self) -> dict[str, Any]:
        """JSON-ready representation written to the store."""
        return self.model_dump(mode="json")


@dataclass
class PipelineResult:
    """Outcome of one record's pass through the pipeline."""

    uid: str
    persisted: bool = False
    label: ClassificationLabel | None = None
    annotated: bool = False
    notified: int = 0
