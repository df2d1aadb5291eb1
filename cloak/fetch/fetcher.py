"""Origin fetching behind a freshness-checked cache."""
from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

import httpx
import structlog

from cloak.fetch.cache import CacheEntry, CacheStore, utcnow
from cloak.fetch.session import FetchSession
from cloak.observability.metrics import MetricsRegistry
from cloak.observability.tracing import log_fetch_result, span

LOGGER = structlog.get_logger(__name__)

DEFAULT_FRESHNESS = timedelta(minutes=5)


class UpstreamFetchError(RuntimeError):
    """The origin could not be reached or answered with a non-2xx status."""

    def __init__(self, url: str, reason: str, *, status: Optional[int] = None) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


@dataclass(frozen=True)
class TargetRequest:
    """The request issued to the origin on the caller's behalf."""

    url: str
    headers: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def build(cls, url: str, headers: Optional[Dict[str, str]] = None) -> "TargetRequest":
        normalised = sorted((name.lower(), value) for name, value in (headers or {}).items())
        return cls(url=url, headers=tuple(normalised))

    @property
    def cache_key(self) -> str:
        material = "\n".join([self.url] + [f"{name}: {value}" for name, value in self.headers])
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def header_dict(self) -> Dict[str, str]:
        return dict(self.headers)


@dataclass(slots=True)
class FetchResult:
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False

    @property
    def text(self) -> str:
        return decode_body(self.body, self.headers)


def decode_body(body: bytes, headers: Dict[str, str]) -> str:
    """Decode using the declared charset, falling back to UTF-8."""
    content_type = next((value for name, value in headers.items() if name.lower() == "content-type"), "")
    charset = "utf-8"
    for part in content_type.split(";")[1:]:
        name, _, value = part.partition("=")
        if name.strip().lower() == "charset" and value.strip():
            charset = value.strip().strip('"')
    try:
        return body.decode(charset, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


class CachedFetcher:
    """Serve origin bodies from the cache while fresh, otherwise fetch and store."""

    def __init__(
        self,
        *,
        session: FetchSession,
        store: CacheStore,
        metrics: MetricsRegistry,
        freshness: timedelta = DEFAULT_FRESHNESS,
        timeout: float = 10.0,
        coalesce_inflight: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._store = store
        self._metrics = metrics
        self._freshness = freshness
        self._timeout = timeout
        self._coalesce = coalesce_inflight
        self._clock = clock
        self._inflight: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    async def fetch(self, target: TargetRequest) -> FetchResult:
        key = target.cache_key
        cached = await self._fresh_entry(target, key)
        if cached is not None:
            return cached
        if not self._coalesce:
            return await self._fetch_and_store(target, key)

        lock = self._inflight.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                # Another request may have refreshed the entry while we waited.
                cached = await self._fresh_entry(target, key, count_miss=False)
                if cached is not None:
                    return cached
                return await self._fetch_and_store(target, key)
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._inflight[key]

    async def _fresh_entry(self, target: TargetRequest, key: str, *, count_miss: bool = True) -> Optional[FetchResult]:
        entry = await self._store.lookup(key)
        if entry is None:
            if count_miss:
                self._metrics.incr("cache_misses")
                LOGGER.info("cache_miss", url=target.url)
            return None
        now = self._clock()
        if entry.is_fresh(now, self._freshness):
            self._metrics.incr("cache_hits")
            LOGGER.info("cache_hit", url=target.url, age_s=int(entry.age(now).total_seconds()))
            return FetchResult(body=entry.body, headers=dict(entry.headers), from_cache=True)
        if count_miss:
            self._metrics.incr("cache_stale")
            LOGGER.info("cache_stale", url=target.url, age_s=int(entry.age(now).total_seconds()))
        return None

    async def _fetch_and_store(self, target: TargetRequest, key: str) -> FetchResult:
        response = await self._do_fetch(target)
        headers = dict(response.headers)
        entry = CacheEntry(body=response.content, headers=headers, captured_at=self._clock())
        await self._store.store(key, entry)
        return FetchResult(body=entry.body, headers=headers, from_cache=False)

    async def _do_fetch(self, target: TargetRequest) -> httpx.Response:
        self._metrics.incr("origin_fetches")
        try:
            with span(name="origin_fetch", url=target.url):
                start = time.perf_counter()
                response = await self._session.fetch(target.url, headers=target.header_dict(), timeout=self._timeout)
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as exc:
            self._metrics.incr("upstream_errors")
            raise UpstreamFetchError(target.url, str(exc) or type(exc).__name__) from exc
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_fetch_result(
            url=target.url,
            status=response.status_code,
            bytes_read=len(response.content or b""),
            elapsed_ms=elapsed_ms,
        )
        if not response.is_success:
            self._metrics.incr("upstream_errors")
            raise UpstreamFetchError(target.url, f"HTTP {response.status_code}", status=response.status_code)
        return response
