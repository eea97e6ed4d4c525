"""Tests for onebox_sync.store."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from onebox_sync.config import ElasticsearchConfig
from onebox_sync.exceptions import StoreError
from onebox_sync.models import ClassificationLabel
from onebox_sync.queries import EMAIL_MAPPINGS
from onebox_sync.store import RecordStore
from tests.conftest import InMemoryElasticsearch


@pytest.fixture
def store(es_config: ElasticsearchConfig, fake_es: InMemoryElasticsearch) -> RecordStore:
    return RecordStore(es_config, client=fake_es)  # type: ignore[arg-type]


class TestRecordStoreLifecycle:
    @pytest.mark.asyncio
    async def test_ensure_index_creates_missing_index(self, store: RecordStore, fake_es: InMemoryElasticsearch):
        await store.ensure_index()
        assert fake_es.created["emails"] == EMAIL_MAPPINGS

    @pytest.mark.asyncio
    async def test_ensure_index_keeps_existing_index(self, es_config: ElasticsearchConfig):
        es = MagicMock()
        es.indices.exists = AsyncMock(return_value=True)
        es.indices.create = AsyncMock()
        await RecordStore(es_config, client=es).ensure_index()
        es.indices.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_ensure_index_unreachable_raises_store_error(self, es_config: ElasticsearchConfig):
        es = MagicMock()
        es.indices.exists = AsyncMock(side_effect=ESConnectionError("refused"))
        with pytest.raises(StoreError):
            await RecordStore(es_config, client=es).ensure_index()

    @pytest.mark.asyncio
    async def test_close(self, store: RecordStore, fake_es: InMemoryElasticsearch):
        await store.close()
        assert fake_es.closed is True


class TestRecordStoreWrites:
    @pytest.mark.asyncio
    async def test_save_is_visible_after_return(self, store: RecordStore, fake_es, record_factory):
        await store.save(record_factory("117"))
        assert fake_es.visible["117"]["subject"] == "Subject 117"
        assert fake_es.visible["117"]["ai_category"] is None

    @pytest.mark.asyncio
    async def test_annotate_merges_label(self, store: RecordStore, fake_es, record_factory):
        await store.save(record_factory("117"))
        await store.annotate("117", ClassificationLabel.INTERESTED)
        doc = fake_es.visible["117"]
        assert doc["ai_category"] == "Interested"
        assert doc["subject"] == "Subject 117"

    @pytest.mark.asyncio
    async def test_save_twice_keeps_one_document(self, store: RecordStore, fake_es, record_factory):
        await store.save(record_factory("117"))
        await store.annotate("117", ClassificationLabel.SPAM)
        await store.save(record_factory("117"))
        assert list(fake_es.visible) == ["117"]
        # Re-persisting clears the stale label until the next annotate.
        assert fake_es.visible["117"]["ai_category"] is None

    @pytest.mark.asyncio
    async def test_upsert_uses_doc_as_upsert(self, es_config: ElasticsearchConfig):
        es = MagicMock()
        es.update = AsyncMock()
        await RecordStore(es_config, client=es).upsert("9", {"a": 1})
        es.update.assert_awaited_once_with(index="emails", id="9", doc={"a": 1}, doc_as_upsert=True)

    @pytest.mark.asyncio
    async def test_write_failure_is_store_error(self, store: RecordStore, fake_es, record_factory):
        fake_es.fail_full_writes.add("117")
        with pytest.raises(StoreError, match="ConnectionError"):
            await store.save(record_factory("117"))
        assert "117" not in fake_es.docs

    @pytest.mark.asyncio
    async def test_save_creates_index_deferred_at_startup(self, store: RecordStore, fake_es, record_factory):
        fake_es.indices.exists = AsyncMock(side_effect=[ESConnectionError("refused"), False])
        with pytest.raises(StoreError):
            await store.ensure_index()
        assert fake_es.created == {}

        await store.save(record_factory("117"))

        assert fake_es.created["emails"] == EMAIL_MAPPINGS
        assert fake_es.visible["117"]["uid"] == "117"

    @pytest.mark.asyncio
    async def test_index_checked_once(self, store: RecordStore, fake_es, record_factory):
        fake_es.indices.exists = AsyncMock(return_value=True)
        await store.save(record_factory("1"))
        await store.save(record_factory("2"))
        fake_es.indices.exists.assert_awaited_once()


class TestRecordStoreSearch:
    @pytest.mark.asyncio
    async def test_search_returns_sources(self, store: RecordStore, record_factory):
        await store.save(record_factory("1"))
        await store.save(record_factory("2"))
        page = await store.search(q="Subject")
        assert page.total == 2
        assert {hit["uid"] for hit in page.hits} == {"1", "2"}

    @pytest.mark.asyncio
    async def test_search_passes_built_query(self, es_config: ElasticsearchConfig):
        es = MagicMock()
        es.search = AsyncMock(return_value={"hits": {"total": {"value": 0}, "hits": []}})
        await RecordStore(es_config, client=es).search(q="demo", folder="INBOX", page=2, size=5)
        body = es.search.call_args.kwargs["body"]
        assert es.search.call_args.kwargs["index"] == "emails"
        assert body["from"] == 5
        assert {"term": {"folder": "INBOX"}} in body["query"]["bool"]["filter"]

    @pytest.mark.asyncio
    async def test_search_failure_is_store_error(self, es_config: ElasticsearchConfig):
        es = MagicMock()
        es.search = AsyncMock(side_effect=ESConnectionError("refused"))
        with pytest.raises(StoreError):
            await RecordStore(es_config, client=es).search(q="x")
