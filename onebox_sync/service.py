"""OneboxService: wires up infrastructure and runs the session and API."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
import uvicorn

from .api import create_app
from .classifier import ClassifierClient
from .config import OneboxConfig
from .exceptions import StoreError
from .fetcher import MessageFetcher
from .imap_client import AsyncImapClient
from .logging import setup_logging
from .notifier import NotificationFanout
from .parser import MimeParser
from .pipeline import ProcessingPipeline
from .session import MailboxSession
from .shutdown import install_signal_handlers
from .store import RecordStore

logger = structlog.get_logger()


class OneboxService:
    """Owns every long-lived client for the lifetime of the process.

    ``run()`` starts the following concurrently via
    :class:`asyncio.TaskGroup`:

    * the mailbox session worker (connect, backfill, idle, reconnect)
    * the uvicorn server for search and health endpoints
    """

    def __init__(self, config: OneboxConfig) -> None:
        self.config = config
        self.start_time: float = time.monotonic()
        self._shutdown_event = asyncio.Event()

        self.store = RecordStore(config.elasticsearch)
        self.classifier = ClassifierClient(config.classifier)
        self.notifier = NotificationFanout(config.notifier)
        self.pipeline = ProcessingPipeline(
            self.store,
            self.classifier,
            self.notifier,
            config.pipeline,
        )
        self.imap = AsyncImapClient(config.imap)
        self.fetcher = MessageFetcher(self.imap, MimeParser(account_id=config.imap.username))
        self.session = MailboxSession(
            config.imap,
            config.session,
            self.imap,
            self.fetcher,
            self.pipeline,
            shutdown_event=self._shutdown_event,
        )

    def health(self) -> dict[str, Any]:
        return {
            "uptime_seconds": time.monotonic() - self.start_time,
            "session": self.session.health(),
            "pipeline": {
                "in_flight": self.pipeline.in_flight,
                "processed": self.pipeline.processed,
                "persist_failures": self.pipeline.persist_failures,
                "annotate_failures": self.pipeline.annotate_failures,
                "degraded_classifications": self.pipeline.degraded_classifications,
                "notifications_sent": self.pipeline.notifications_sent,
                "parse_skipped": self.fetcher.skipped,
            },
        }

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _prepare_store(self) -> None:
        try:
            await self.store.ensure_index()
        except StoreError as exc:
            # Mail keeps flowing; the first Persist retries the index setup.
            logger.error("es_index_setup_deferred", index=self.store.index, error=str(exc))

    async def _run_session(self) -> None:
        try:
            await self.session.run()
        finally:
            # A terminal session failure takes the API down with it.
            self._shutdown_event.set()

    async def _run_api_server(self) -> None:
        app = create_app(self.store, self)
        config = uvicorn.Config(
            app,
            host=self.config.api_host,
            port=self.config.api_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start all subsystems and run until shutdown.

        ``asyncio.run(service.run())``
        """
        setup_logging(json=self.config.log_json, level=self.config.log_level)
        install_signal_handlers(self._shutdown_event, lambda: self.pipeline.in_flight)
        self.start_time = time.monotonic()
        logger.info("onebox_starting", mailbox=self.config.imap.mailbox, host=self.config.imap.host)

        try:
            await self._prepare_store()
            await self.classifier.start()
            await self.notifier.start()
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_session())
                tg.create_task(self._run_api_server())
        except* Exception:
            logger.exception("onebox_task_group_error")
            raise
        finally:
            await self.pipeline.drain()
            await self.notifier.close()
            await self.classifier.close()
            await self.store.close()
            logger.info("onebox_stopped")
