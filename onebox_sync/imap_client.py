"""Async IMAP client wrapping IMAPClient with asyncio.to_thread.

Every call runs in a worker thread so the event loop never blocks, and
library exceptions are translated at this boundary: rejected credentials
become :class:`AuthError`, everything transport-related becomes
:class:`NetworkError`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, TypeVar

import structlog
from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from .config import ImapConfig
from .exceptions import AuthError, NetworkError
from .models import FetchedEmail, FolderStatus

logger = structlog.get_logger()

T = TypeVar("T")

HEADER_ITEM = "BODY.PEEK[HEADER]"
HEADER_KEY = b"BODY[HEADER]"
PEEK_ITEM = "BODY.PEEK[]"
PEEK_KEY = b"BODY[]"
RFC822_ITEM = "RFC822"
RFC822_KEY = b"RFC822"


@dataclass(frozen=True)
class IdleEvents:
    """What the server pushed during one IDLE wait."""

    new_mail: bool = False
    closed: bool = False


def _classify_idle_responses(responses: Iterable[Any]) -> IdleEvents:
    new_mail = False
    closed = False
    for response in responses:
        if not isinstance(response, tuple) or len(response) < 2:
            continue
        first, second = response[0], response[1]
        if isinstance(first, int) and second == b"EXISTS":
            new_mail = True
        elif first == b"BYE":
            closed = True
    return IdleEvents(new_mail=new_mail, closed=closed)


def _to_utc(value: Any) -> datetime | None:
    if not isinstance(value, datetime):
        return None
    # Naive values are local time (IMAPClient normalises INTERNALDATE).
    return value.astimezone(UTC)


class AsyncImapClient:
    """Async-friendly IMAP client for a single mailbox connection.

    Only the mailbox session task calls into this object, so the
    underlying socket is never used from two threads at once.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: IMAPClient | None = None
        self._idling = False

    @property
    def idling(self) -> bool:
        return self._idling

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket. Raises :class:`NetworkError` on transport failure."""
        self._conn = await self._call(self._open_sync)
        self._idling = False
        logger.info("imap_connected", host=self._config.host, port=self._config.port)

    def _open_sync(self) -> IMAPClient:
        return IMAPClient(
            self._config.host,
            port=self._config.port,
            ssl=self._config.use_ssl,
            use_uid=True,
            timeout=self._config.timeout_seconds,
        )

    async def login(self) -> None:
        """Authenticate. Raises :class:`AuthError` if credentials are rejected."""
        conn = self._require_conn()
        await self._call(
            conn.login,
            self._config.username,
            self._config.password.get_secret_value(),
        )
        logger.info("imap_authenticated", username=self._config.username)

    async def select_folder(self, folder: str) -> FolderStatus:
        conn = self._require_conn()
        info: dict[bytes, Any] = await self._call(conn.select_folder, folder)
        status = FolderStatus(
            uidvalidity=info.get(b"UIDVALIDITY"),
            uidnext=info.get(b"UIDNEXT"),
            exists=int(info.get(b"EXISTS", 0)),
        )
        logger.info(
            "imap_folder_selected",
            folder=folder,
            exists=status.exists,
            uidnext=status.uidnext,
            uidvalidity=status.uidvalidity,
        )
        return status

    async def supports_idle(self) -> bool:
        conn = self._require_conn()
        return bool(await self._call(conn.has_capability, "IDLE"))

    async def disconnect(self) -> None:
        """End IDLE if needed and logout. Never raises."""
        if self._conn is None:
            return
        conn = self._conn
        self._conn = None
        await asyncio.to_thread(self._disconnect_sync, conn, self._idling)
        self._idling = False
        logger.info("imap_disconnected")

    @staticmethod
    def _disconnect_sync(conn: IMAPClient, idling: bool) -> None:
        try:
            if idling:
                conn.idle_done()
            conn.logout()
        except (IMAPClientError, OSError):
            # Socket already gone; make sure it is released.
            try:
                conn.shutdown()
            except (IMAPClientError, OSError):
                pass

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command (not while idling)."""
        if self._conn is None:
            return False
        if self._idling:
            return True
        try:
            await self.noop()
            return True
        except NetworkError:
            return False

    # ------------------------------------------------------------------
    # IDLE / keep-alive
    # ------------------------------------------------------------------

    async def noop(self) -> None:
        """Keep-alive probe."""
        conn = self._require_conn()
        await self._call(conn.noop)

    async def idle_start(self) -> None:
        conn = self._require_conn()
        await self._call(conn.idle)
        self._idling = True

    async def idle_wait(self, timeout: float) -> IdleEvents:
        """Block up to *timeout* seconds for server pushes while idling."""
        conn = self._require_conn()
        responses = await self._call(conn.idle_check, timeout=timeout)
        return _classify_idle_responses(responses)

    async def idle_done(self) -> IdleEvents:
        """Leave IDLE. Pushes received while terminating are returned too."""
        conn = self._require_conn()
        if not self._idling:
            return IdleEvents()
        self._idling = False
        _, responses = await self._call(conn.idle_done)
        return _classify_idle_responses(responses)

    # ------------------------------------------------------------------
    # Search / retrieval
    # ------------------------------------------------------------------

    async def search_since(self, since: date) -> list[int]:
        """UIDs of messages received on or after *since* (day-granular)."""
        conn = self._require_conn()
        uids = await self._call(conn.search, ["SINCE", since])
        return sorted(int(uid) for uid in uids)

    async def search_after(self, last_uid: int) -> list[int]:
        """UIDs strictly greater than *last_uid*.

        ``UID n:*`` always matches the highest UID even when it is below
        *n*, so the result is filtered.
        """
        conn = self._require_conn()
        uids = await self._call(conn.search, ["UID", f"{last_uid + 1}:*"])
        return sorted(int(uid) for uid in uids if int(uid) > last_uid)

    async def fetch_message(
        self,
        uid: int,
        *,
        headers_only: bool = False,
        mark_seen: bool = False,
    ) -> FetchedEmail | None:
        """Fetch one message by UID. Returns ``None`` if it no longer exists."""
        conn = self._require_conn()
        if headers_only:
            item, key = HEADER_ITEM, HEADER_KEY
        elif mark_seen:
            item, key = RFC822_ITEM, RFC822_KEY
        else:
            item, key = PEEK_ITEM, PEEK_KEY

        response: dict[int, dict[bytes, Any]] = await self._call(
            conn.fetch, [uid], [item, "INTERNALDATE"]
        )
        data = response.get(uid)
        if not data or not data.get(key):
            return None
        return FetchedEmail(
            uid=uid,
            raw_bytes=data[key],
            internal_date=_to_utc(data.get(b"INTERNALDATE")),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_conn(self) -> IMAPClient:
        if self._conn is None:
            raise NetworkError("IMAP connection is not open")
        return self._conn

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except LoginError as exc:
            raise AuthError(str(exc)) from exc
        except (IMAPClientError, OSError) as exc:
            raise NetworkError(f"{type(exc).__name__}: {exc}") from exc
