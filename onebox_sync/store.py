"""Record store adapter over async Elasticsearch."""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog
from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from .config import ElasticsearchConfig
from .exceptions import StoreError
from .models import ClassificationLabel, EmailRecord
from .queries import EMAIL_MAPPINGS, build_email_search

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class SearchPage:
    """One page of stored email documents."""

    total: int
    hits: list[dict[str, Any]] = field(default_factory=list)


class RecordStore:
    """Upsert-by-id with explicit refresh for read-after-write visibility.

    Every write is keyed by the record's UID and merged into any existing
    document, so re-processing a message is idempotent.
    """

    def __init__(
        self,
        config: ElasticsearchConfig,
        client: AsyncElasticsearch | None = None,
    ) -> None:
        self._config = config
        self._client = client or AsyncElasticsearch(
            hosts=[config.url],
            request_timeout=config.request_timeout_seconds,
        )
        self._index_ready = False

    @property
    def index(self) -> str:
        return self._config.index

    @property
    def client(self) -> AsyncElasticsearch:
        return self._client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_index(self) -> None:
        """Create the index with its mapping if it does not exist yet.

        Called at startup and again before the first save if startup could
        not reach Elasticsearch.
        """
        exists = await self._guard(self._client.indices.exists(index=self.index))
        if not exists:
            await self._guard(
                self._client.indices.create(index=self.index, mappings=EMAIL_MAPPINGS)
            )
            logger.info("es_index_created", index=self.index)
        self._index_ready = True
        logger.info("record_store_started", url=self._config.url, index=self.index)

    async def close(self) -> None:
        await self._client.close()
        logger.info("record_store_stopped")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, doc_id: str, fields: dict[str, Any]) -> None:
        """Merge *fields* into the document *doc_id*, creating it if needed."""
        await self._guard(
            self._client.update(
                index=self.index,
                id=doc_id,
                doc=fields,
                doc_as_upsert=True,
            )
        )

    async def refresh(self) -> None:
        """Make every prior write visible to search."""
        await self._guard(self._client.indices.refresh(index=self.index))

    async def save(self, record: EmailRecord) -> None:
        """Persist a record without its label, then refresh."""
        if not self._index_ready:
            await self.ensure_index()
        document = record.to_document()
        document["ai_category"] = None
        await self.upsert(record.uid, document)
        await self.refresh()
        logger.info("email_indexed", uid=record.uid, subject=record.subject)

    async def annotate(self, uid: str, label: ClassificationLabel) -> None:
        """Partial update of the label on an already persisted record, then refresh."""
        await self.upsert(uid, {"ai_category": label.value})
        await self.refresh()
        logger.info("email_category_updated", uid=uid, category=label.value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        *,
        q: str | None = None,
        account_id: str | None = None,
        folder: str | None = None,
        page: int = 1,
        size: int = 20,
    ) -> SearchPage:
        body = build_email_search(q=q, account_id=account_id, folder=folder, page=page, size=size)
        resp = await self._guard(self._client.search(index=self.index, body=body))
        hits_data = resp["hits"]
        total = hits_data.get("total", {})
        return SearchPage(
            total=total.get("value", 0) if isinstance(total, dict) else int(total),
            hits=[hit["_source"] for hit in hits_data.get("hits", [])],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _guard(self, call: Awaitable[T]) -> T:
        try:
            return await call
        except (ApiError, TransportError) as exc:
            raise StoreError(f"{type(exc).__name__}: {exc}") from exc
