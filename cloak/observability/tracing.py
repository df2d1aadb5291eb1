"""Tracing helpers for request, fetch and parse stages."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars


def _logger():
    return structlog.get_logger("cloak.trace")


def set_context(*, request_id: str, route: Optional[str] = None) -> None:
    bind_contextvars(request_id=request_id)
    if route is not None:
        bind_contextvars(route=route)
    _logger().debug("trace_context", request_id=request_id, route=route)


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, url: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().info("trace_span", span=name, url=url, elapsed_ms=elapsed_ms)


def log_fetch_result(*, url: str, status: int, bytes_read: int, elapsed_ms: int) -> None:
    _logger().info(
        "fetch_result",
        url=url,
        status=status,
        bytes=bytes_read,
        elapsed_ms=elapsed_ms,
    )
