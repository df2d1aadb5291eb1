"""Factories for httpx-backed origin fetch sessions."""
from __future__ import annotations

import contextlib
from typing import AsyncIterator, Dict, Optional

import httpx


class FetchSession:
    """Thin wrapper around a shared ``httpx.AsyncClient``."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    async def fetch(self, url: str, *, headers: Optional[Dict[str, str]] = None, timeout: float = 10.0) -> httpx.Response:
        """GET ``url`` returning the buffered response.

        Header values are sent as latin-1 bytes, the encoding they arrive in.
        """
        if self._client is None:
            raise RuntimeError("No fetch session available")
        raw_headers = {name: value.encode("latin-1") for name, value in (headers or {}).items()}
        return await self._client.get(url, headers=raw_headers, timeout=timeout)


@contextlib.asynccontextmanager
async def create_fetch_session(*, timeout: float, max_connections: int) -> AsyncIterator[FetchSession]:
    """Yield a configured `FetchSession` for the duration of the context."""
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(limits=limits, timeout=timeout, follow_redirects=True) as client:
        yield FetchSession(client)
