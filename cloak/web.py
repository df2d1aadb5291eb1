"""FastAPI host for the cloaking proxy."""
from __future__ import annotations

import contextlib
import time
from typing import AsyncIterator, Optional

import structlog
from fastapi import FastAPI, Request, Response

from cloak.fetch.cache import CacheStore, DiskCacheStore, MemoryCacheStore
from cloak.fetch.fetcher import CachedFetcher
from cloak.fetch.session import create_fetch_session
from cloak.observability.metrics import MetricsRegistry
from cloak.proxy.handler import ProxyRequest, handle_request
from cloak.settings import Settings

LOGGER = structlog.get_logger(__name__)


def build_store(settings: Settings) -> CacheStore:
    if settings.cache.backend == "disk":
        return DiskCacheStore(settings.cache.path, max_entries=settings.cache.max_entries)
    return MemoryCacheStore(max_entries=settings.cache.max_entries)


def create_app(
    settings: Settings,
    *,
    fetcher: Optional[CachedFetcher] = None,
    metrics: Optional[MetricsRegistry] = None,
) -> FastAPI:
    """Build the application; an injected fetcher bypasses the managed session."""
    metrics = metrics or MetricsRegistry()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            if fetcher is not None:
                app.state.fetcher = fetcher
                yield
                return
            async with create_fetch_session(
                timeout=settings.fetch.timeout_seconds,
                max_connections=settings.fetch.max_connections,
            ) as session:
                app.state.fetcher = CachedFetcher(
                    session=session,
                    store=build_store(settings),
                    metrics=metrics,
                    freshness=settings.cache.freshness,
                    timeout=settings.fetch.timeout_seconds,
                    coalesce_inflight=settings.fetch.coalesce_inflight,
                )
                LOGGER.info("proxy_started", cache_backend=settings.cache.backend)
                yield
        finally:
            if settings.metrics.export_dir is not None:
                stamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
                metrics.export(path=settings.metrics.export_dir / f"metrics_{stamp}.json")

    app = FastAPI(title="twitter-cloak", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.metrics = metrics

    async def cloak_entry(request: Request) -> Response:
        outcome = await handle_request(
            ProxyRequest(
                method=request.method,
                url=str(request.url),
                user_agent=request.headers.get("user-agent"),
            ),
            fetcher=request.app.state.fetcher,
            settings=settings,
            metrics=metrics,
        )
        return Response(content=outcome.body, status_code=outcome.status, headers=outcome.headers)

    # Any path and any method reach the dispatcher, which owns the 405 answer.
    app.add_route("/{path:path}", cloak_entry, methods=None, include_in_schema=False)
    return app
