"""Message fetcher: RawMessageHandles → EmailRecords."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable

import structlog

from .exceptions import ParseError
from .imap_client import AsyncImapClient
from .models import EmailRecord, RawMessageHandle
from .parser import MimeParser

logger = structlog.get_logger()


class MessageFetcher:
    """Resolves handles to parsed records over the session's connection.

    Each handle is fetched with its own ``UID FETCH`` so record identity
    always comes from the UID, never from a sequence position that may
    shift between the new-mail push and the fetch.
    """

    def __init__(self, client: AsyncImapClient, parser: MimeParser) -> None:
        self._client = client
        self._parser = parser
        self.skipped: int = 0

    async def fetch(
        self,
        handles: Iterable[RawMessageHandle],
        *,
        headers_only: bool = False,
        mark_seen: bool = False,
    ) -> AsyncIterator[EmailRecord]:
        """Yield one record per successfully parsed handle, in UID order.

        A message that vanished or fails to parse is logged and skipped.
        :class:`NetworkError` propagates: the connection is gone.
        """
        for handle in sorted(set(handles), key=lambda h: h.uid):
            fetched = await self._client.fetch_message(
                handle.uid,
                headers_only=headers_only,
                mark_seen=mark_seen,
            )
            if fetched is None:
                self.skipped += 1
                logger.warning("message_not_found", uid=handle.uid, folder=handle.folder)
                continue

            try:
                if headers_only:
                    record = self._parser.parse_headers(fetched, handle.folder)
                else:
                    record = self._parser.parse(fetched, handle.folder)
            except ParseError as exc:
                self.skipped += 1
                logger.error("message_parse_failed", uid=handle.uid, error=str(exc))
                continue

            yield record
