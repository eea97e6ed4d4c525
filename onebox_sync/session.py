"""Mailbox session: the connection state machine.

One long-lived task owns the IMAP connection and performs every state
transition::

    disconnected → connecting → authenticated → folder_selected → idle ⇄ busy
                                 ↑                                      │
                                 └──────────── reconnecting ←───────────┘

The session backfills once per process, then idles on the folder.  New
mail turns ``idle`` into ``busy`` while handles are fetched and dispatched
to the pipeline; the keep-alive watchdog only ever probes from ``idle``,
on this same task, so a probe can never overlap a fetch.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, stop_never, wait_exponential

from .config import ImapConfig, SessionConfig
from .exceptions import AuthError, CapabilityError, NetworkError
from .fetcher import MessageFetcher
from .imap_client import AsyncImapClient
from .models import FolderStatus, RawMessageHandle, SessionState
from .pipeline import ProcessingPipeline

logger = structlog.get_logger()


class MailboxSession:
    """Keeps one mailbox folder mirrored for the lifetime of the process."""

    def __init__(
        self,
        imap_config: ImapConfig,
        config: SessionConfig,
        client: AsyncImapClient,
        fetcher: MessageFetcher,
        pipeline: ProcessingPipeline,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        self._imap_config = imap_config
        self._config = config
        self._client = client
        self._fetcher = fetcher
        self._pipeline = pipeline
        self._shutdown = shutdown_event or asyncio.Event()

        self.folder = imap_config.mailbox
        self.state = SessionState.DISCONNECTED
        self.transitions: list[SessionState] = [SessionState.DISCONNECTED]
        self.last_activity: datetime | None = None
        self.terminal_error: str | None = None

        self._last_uid: int | None = None
        self._uidvalidity: int | None = None
        self._backfilled = False
        self._fetch_in_flight = False

        self.probes_sent: int = 0
        self.reconnects: int = 0
        self.batches_dispatched: int = 0
        self.live_messages: int = 0
        self.backfill_size: int = 0

    @property
    def last_uid(self) -> int | None:
        return self._last_uid

    @property
    def fetch_in_flight(self) -> bool:
        return self._fetch_in_flight

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Connect, backfill and idle until shutdown, reconnecting on failure.

        Raises :class:`AuthError` / :class:`CapabilityError`, and
        :class:`NetworkError` only when a configured startup budget is
        exhausted.
        """
        reconnecting = False
        try:
            while not self._shutdown.is_set():
                status = await self._establish(reconnecting=reconnecting)
                if status is None:
                    break
                reconnecting = True
                try:
                    await self._synchronize(status)
                    await self._idle_loop()
                except NetworkError as exc:
                    if self._shutdown.is_set():
                        break
                    logger.warning(
                        "imap_connection_lost",
                        error=str(exc),
                        state=self.state.value,
                    )
                    self._transition(SessionState.RECONNECTING)
                    self.reconnects += 1
                    await self._client.disconnect()
        except (AuthError, CapabilityError) as exc:
            self.terminal_error = f"{type(exc).__name__}: {exc}"
            logger.error("session_terminal_failure", error=self.terminal_error)
            raise
        finally:
            await self.close()

    def stop(self) -> None:
        """Ask the session to stop after its current IDLE slice."""
        self._shutdown.set()

    async def close(self) -> None:
        if self.state is not SessionState.DISCONNECTED:
            await self._client.disconnect()
            self._transition(SessionState.DISCONNECTED)

    def health(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "folder": self.folder,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "last_uid": self._last_uid,
            "probes_sent": self.probes_sent,
            "reconnects": self.reconnects,
            "batches_dispatched": self.batches_dispatched,
            "live_messages": self.live_messages,
            "backfill_size": self.backfill_size,
            "terminal_error": self.terminal_error,
        }

    # ------------------------------------------------------------------
    # Connect / reconnect
    # ------------------------------------------------------------------

    async def _establish(self, *, reconnecting: bool) -> FolderStatus | None:
        """Run connect() with capped exponential backoff until the folder is selected.

        A fresh retry controller per call resets the backoff after every
        successful selection.  A reconnect first waits the initial delay and
        the retry waits continue from the next step of the sequence.
        Returns ``None`` if shutdown was requested.
        """
        first_wait = self._config.reconnect_initial_seconds
        if reconnecting:
            await self._sleep(first_wait)
            first_wait *= self._config.reconnect_multiplier

        budget = self._config.startup_max_attempts
        stop = stop_after_attempt(budget) if budget and not reconnecting else stop_never

        status: FolderStatus | None = None
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(NetworkError),
            stop=stop,
            wait=wait_exponential(
                multiplier=first_wait,
                exp_base=self._config.reconnect_multiplier,
                max=self._config.reconnect_max_seconds,
            ),
            sleep=self._sleep,
            before_sleep=self._log_backoff,
            reraise=True,
        ):
            with attempt:
                if self._shutdown.is_set():
                    return None
                status = await self._connect_once(reconnecting=reconnecting)
        return status

    async def _connect_once(self, *, reconnecting: bool) -> FolderStatus:
        self._transition(SessionState.CONNECTING)
        try:
            await self._client.connect()
            await self._client.login()
            self._transition(SessionState.AUTHENTICATED)
            await self._require_capabilities()
            status = await self._client.select_folder(self.folder)
        except NetworkError:
            await self._client.disconnect()
            self._transition(SessionState.RECONNECTING if reconnecting else SessionState.DISCONNECTED)
            raise
        self._touch()
        self._transition(SessionState.FOLDER_SELECTED)
        return status

    async def _require_capabilities(self) -> None:
        if not callable(getattr(self._client, "noop", None)):
            raise CapabilityError("IMAP client exposes no keep-alive operation")
        if not await self._client.supports_idle():
            raise CapabilityError(f"server {self._imap_config.host} does not support IDLE")

    def _log_backoff(self, retry_state: Any) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "imap_connect_failed",
            attempt=retry_state.attempt_number,
            next_wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc) if exc else None,
        )

    async def _sleep(self, seconds: float) -> None:
        """Backoff sleep that returns early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Backfill / catch-up
    # ------------------------------------------------------------------

    async def _synchronize(self, status: FolderStatus) -> None:
        """Bring the live baseline up to date after a folder selection."""
        if not self._backfilled:
            self._uidvalidity = status.uidvalidity
            self._last_uid = await self._baseline(status)
            await self._backfill()
            self._backfilled = True
        elif status.uidvalidity != self._uidvalidity:
            logger.warning(
                "imap_uidvalidity_changed",
                previous=self._uidvalidity,
                current=status.uidvalidity,
            )
            self._uidvalidity = status.uidvalidity
            self._last_uid = await self._baseline(status)

        # Mail that arrived while disconnected (or during the backfill).
        caught_up = await self._dispatch_new()
        if caught_up:
            logger.info("catch_up_dispatched", count=caught_up, last_uid=self._last_uid)

    async def _baseline(self, status: FolderStatus) -> int:
        if status.uidnext is not None:
            return int(status.uidnext) - 1
        uids = await self._client.search_after(0)
        return max(uids, default=0)

    async def _backfill(self) -> None:
        mode = self._config.backfill_mode
        if mode == "off":
            logger.info("backfill_skipped")
            return

        since = (datetime.now(UTC) - timedelta(days=self._config.backfill_days)).date()
        uids = [uid for uid in await self._client.search_since(since) if uid <= (self._last_uid or 0)]
        self._touch()
        self.backfill_size = len(uids)
        if not uids:
            logger.info("backfill_empty", since=since.isoformat())
            return

        handles = [RawMessageHandle(uid=uid, folder=self.folder) for uid in uids]
        count = 0
        self._fetch_in_flight = True
        try:
            if mode == "reconcile":
                async for _record in self._fetcher.fetch(handles, headers_only=True):
                    count += 1
            else:
                async for record in self._fetcher.fetch(handles, mark_seen=False):
                    self._pipeline.dispatch(record, notify=False)
                    count += 1
        finally:
            self._fetch_in_flight = False
        logger.info("backfill_complete", mode=mode, matched=len(uids), fetched=count, since=since.isoformat())

    # ------------------------------------------------------------------
    # Idle cycle
    # ------------------------------------------------------------------

    async def _idle_loop(self) -> None:
        loop = asyncio.get_running_loop()
        await self._client.idle_start()
        self._transition(SessionState.IDLE)
        next_probe = loop.time() + self._config.watchdog_interval_seconds

        while not self._shutdown.is_set():
            timeout = max(0.0, min(self._config.idle_check_seconds, next_probe - loop.time()))
            events = await self._client.idle_wait(timeout)
            if events.closed:
                raise NetworkError("server closed the connection")
            if events.new_mail:
                self._touch()
                await self._handle_new_mail()
                next_probe = loop.time() + self._config.watchdog_interval_seconds
                continue
            if loop.time() >= next_probe:
                await self._probe()
                next_probe = loop.time() + self._config.watchdog_interval_seconds

        await self._client.idle_done()

    async def _handle_new_mail(self) -> None:
        events = await self._client.idle_done()
        self._transition(SessionState.BUSY)
        if events.closed:
            raise NetworkError("server closed the connection")
        count = await self._dispatch_new()
        logger.info("new_mail_dispatched", count=count, last_uid=self._last_uid)
        await self._client.idle_start()
        self._transition(SessionState.IDLE)

    async def _probe(self) -> None:
        if self.state is not SessionState.IDLE or self._fetch_in_flight:
            logger.debug("keepalive_probe_suppressed", state=self.state.value)
            return
        await self._client.idle_done()
        await self._client.noop()
        self._touch()
        self.probes_sent += 1
        logger.info("keepalive_probe_sent", probes_sent=self.probes_sent)
        await self._client.idle_start()

    async def _dispatch_new(self) -> int:
        """Fetch every UID above the baseline and hand each record to the pipeline."""
        last_uid = self._last_uid or 0
        uids = await self._client.search_after(last_uid)
        if not uids:
            return 0

        handles = [RawMessageHandle(uid=uid, folder=self.folder) for uid in uids]
        count = 0
        self._fetch_in_flight = True
        try:
            async for record in self._fetcher.fetch(handles, mark_seen=self._config.mark_seen):
                self._pipeline.dispatch(record)
                self._last_uid = max(self._last_uid or 0, int(record.uid))
                count += 1
        finally:
            self._fetch_in_flight = False

        self._last_uid = max(self._last_uid or 0, *uids)
        self._touch()
        self.batches_dispatched += 1
        self.live_messages += count
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        if new_state is self.state:
            return
        logger.info("session_state_changed", previous=self.state.value, current=new_state.value)
        self.state = new_state
        self.transitions.append(new_state)

    def _touch(self) -> None:
        self.last_activity = datetime.now(UTC)
