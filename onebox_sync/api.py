"""Search surface and health probes (FastAPI)."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Annotated, Any

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .exceptions import StoreError
from .models import SessionState
from .store import RecordStore

if TYPE_CHECKING:
    from .service import OneboxService

logger = structlog.get_logger()


class EmailSearchResponse(BaseModel):
    hits: list[dict[str, Any]]
    total: int
    page: int
    size: int


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def create_app(store: RecordStore, service: OneboxService | None = None) -> FastAPI:
    """Build the API app.

    *service* is optional so the search surface can run on its own
    (``python -m onebox_sync api``); the probes then report only the API.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Standalone mode owns the store; otherwise the service does.
        if service is None:
            await store.ensure_index()
        yield
        if service is None:
            await store.close()

    app = FastAPI(title="onebox-sync", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.service = service
    started = time.monotonic()

    @app.get("/api/emails/search", response_model=EmailSearchResponse)
    async def search_emails(
        store: Annotated[RecordStore, Depends(get_store)],
        q: str = Query(default=""),
        account_id: str | None = Query(default=None),
        folder: str | None = Query(default=None),
        page: int = Query(default=1, ge=1),
        size: int = Query(default=20, ge=1, le=100),
    ):
        """Full-text search over stored emails."""
        try:
            result = await store.search(
                q=q or None,
                account_id=account_id,
                folder=folder,
                page=page,
                size=size,
            )
        except StoreError:
            logger.exception("search_failed", q=q)
            return JSONResponse({"error": "Search failed"}, status_code=500)
        return EmailSearchResponse(hits=result.hits, total=result.total, page=page, size=size)

    @app.get("/health")
    async def health() -> JSONResponse:
        body: dict[str, Any] = {
            "service": "onebox-sync",
            "uptime_seconds": time.monotonic() - started,
        }
        code = 200
        if service is not None:
            body.update(service.health())
            if service.session.terminal_error is not None:
                code = 503
        return JSONResponse(body, status_code=code)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        if service is None:
            is_ready = True
        else:
            is_ready = service.session.state in (SessionState.IDLE, SessionState.BUSY)
        return JSONResponse({"ready": is_ready}, status_code=200 if is_ready else 503)

    return app
