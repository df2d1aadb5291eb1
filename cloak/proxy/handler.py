"""Request dispatch: method gate, classification and response composition."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qs, quote, urlsplit

import structlog

from cloak.fetch.fetcher import CachedFetcher, TargetRequest, UpstreamFetchError
from cloak.observability.metrics import MetricsRegistry
from cloak.observability.tracing import clear_context, set_context
from cloak.parse.meta import extract_meta_tags
from cloak.proxy.classify import Route, classify
from cloak.proxy.codec import DecodingError, decode
from cloak.proxy.landing import render_landing_page
from cloak.proxy.synth import synthesize
from cloak.settings import Settings

LOGGER = structlog.get_logger(__name__)

HTML_HEADERS = {"Content-Type": "text/html"}
# Reserved and already-escaped characters pass through; the rest is percent-encoded.
_LOCATION_SAFE = ":/?#[]@!$&'()*+,;=%~"


@dataclass(frozen=True)
class ProxyRequest:
    method: str
    url: str
    user_agent: Optional[str] = None

    def query_value(self, name: str) -> Optional[str]:
        """First non-empty value of the query parameter, if any."""
        values = parse_qs(urlsplit(self.url).query, keep_blank_values=True).get(name, [])
        return next((value for value in values if value), None)


@dataclass
class ProxyResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @classmethod
    def html(cls, content: str) -> "ProxyResponse":
        return cls(status=200, headers=dict(HTML_HEADERS), body=content.encode("utf-8"))

    @classmethod
    def empty(cls, status: int) -> "ProxyResponse":
        return cls(status=status)


async def handle_request(
    request: ProxyRequest,
    *,
    fetcher: CachedFetcher,
    settings: Settings,
    metrics: MetricsRegistry,
) -> ProxyResponse:
    """Serve one inbound request; never raises for client or upstream faults."""
    metrics.incr("requests")
    if request.method.upper() != "GET":
        metrics.incr("method_not_allowed")
        LOGGER.info("method_not_allowed", method=request.method)
        return ProxyResponse.empty(405)

    token = request.query_value(settings.proxy.query_param)
    route = classify(
        has_target=token is not None,
        user_agent=request.user_agent,
        signatures=settings.proxy.bot_signatures,
    )
    metrics.incr(f"route_{route.value}")
    set_context(request_id=uuid.uuid4().hex, route=route.value)
    try:
        if route is Route.LANDING:
            return ProxyResponse.html(
                render_landing_page(
                    query_param=settings.proxy.query_param,
                    public_url=settings.proxy.public_url,
                    freshness_minutes=max(1, settings.cache.freshness_seconds // 60),
                )
            )

        try:
            target_url = decode(token)
        except DecodingError as exc:
            metrics.incr("decode_errors")
            LOGGER.info("decode_failed", reason=str(exc))
            return ProxyResponse.empty(400)

        if route is Route.REDIRECT:
            LOGGER.info("redirect", target=target_url)
            return ProxyResponse(status=302, headers={"Location": quote(target_url, safe=_LOCATION_SAFE)})

        return await _serve_preview(target_url, request.user_agent or "", fetcher=fetcher, metrics=metrics)
    finally:
        clear_context()


async def _serve_preview(
    target_url: str,
    user_agent: str,
    *,
    fetcher: CachedFetcher,
    metrics: MetricsRegistry,
) -> ProxyResponse:
    target = TargetRequest.build(target_url, {"User-Agent": user_agent})
    with metrics.timer("preview"):
        try:
            result = await fetcher.fetch(target)
        except UpstreamFetchError as exc:
            LOGGER.warning("upstream_failed", target=target_url, reason=exc.reason, status=exc.status)
            return ProxyResponse.empty(502)
        tags = extract_meta_tags(result.text)
    metrics.incr("meta_tags_served", len(tags))
    LOGGER.info("preview_served", target=target_url, tags=len(tags), from_cache=result.from_cache)
    return ProxyResponse.html(synthesize(tags))
