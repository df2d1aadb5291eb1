import json

import httpx
import pytest
from fastapi.testclient import TestClient

from cloak.fetch.cache import DiskCacheStore, MemoryCacheStore
from cloak.fetch.fetcher import CachedFetcher
from cloak.fetch.session import FetchSession
from cloak.observability.metrics import MetricsRegistry
from cloak.proxy.codec import encode
from cloak.settings import Settings
from cloak.web import build_store, create_app

TARGET = "https://example.com/article?id=1&lang=en"
BOT = "Twitterbot/1.0"


class StaticSession(FetchSession):
    def __init__(self):
        super().__init__(client=None)
        self.calls = 0

    async def fetch(self, url: str, *, headers=None, timeout: float = 10.0) -> httpx.Response:  # type: ignore[override]
        self.calls += 1
        return httpx.Response(
            200,
            text='<head><meta name="twitter:title" content="Hi"><meta name="robots" content="all"></head>',
            request=httpx.Request("GET", url),
        )


@pytest.fixture()
def session():
    return StaticSession()


@pytest.fixture()
def client(session):
    metrics = MetricsRegistry()
    fetcher = CachedFetcher(session=session, store=MemoryCacheStore(), metrics=metrics)
    app = create_app(Settings(), fetcher=fetcher, metrics=metrics)
    with TestClient(app) as test_client:
        yield test_client


def test_root_serves_landing_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "Generated URL" in response.text


def test_visitor_redirect(client, session):
    response = client.get("/", params={"url": encode(TARGET)}, headers={"User-Agent": "Mozilla/5.0"}, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == TARGET
    assert session.calls == 0


def test_crawler_preview_is_cached(client, session):
    for _ in range(2):
        response = client.get("/", params={"url": encode(TARGET)}, headers={"User-Agent": BOT})
        assert response.status_code == 200
        assert response.text == '<body><meta name="twitter:title" content="Hi"></body>'
    assert session.calls == 1


def test_bad_token_is_400(client):
    response = client.get("/?url=@@@", headers={"User-Agent": BOT})
    assert response.status_code == 400
    assert response.content == b""


@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "TRACE", "PROPFIND", "PURGE"])
def test_other_methods_are_405(client, method):
    response = client.request(method, "/", params={"url": encode(TARGET)})
    assert response.status_code == 405
    assert response.content == b""


def test_metrics_exported_on_shutdown(tmp_path, session):
    settings = Settings()
    settings.metrics.export_dir = tmp_path / "metrics"
    metrics = MetricsRegistry()
    fetcher = CachedFetcher(session=session, store=MemoryCacheStore(), metrics=metrics)
    with TestClient(create_app(settings, fetcher=fetcher, metrics=metrics)) as test_client:
        test_client.get("/")
    exported = list((tmp_path / "metrics").glob("metrics_*.json"))
    assert len(exported) == 1
    payload = json.loads(exported[0].read_text(encoding="utf-8"))
    assert payload["counters"]["route_landing"] == 1


def test_build_store_follows_backend(tmp_path):
    settings = Settings()
    assert isinstance(build_store(settings), MemoryCacheStore)
    settings.cache.backend = "disk"
    settings.cache.path = tmp_path / "cache.json"
    assert isinstance(build_store(settings), DiskCacheStore)


def test_unusual_method_reaches_dispatcher(client):
    response = client.request("TRACE", "/", params={"url": encode(TARGET)})
    assert response.status_code == 405
    assert response.content == b""
    assert client.app.state.metrics.get("method_not_allowed") == 1


def test_any_path_is_served(client, session):
    response = client.get("/share/abc", params={"url": encode(TARGET)}, headers={"User-Agent": "Mozilla/5.0"}, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == TARGET
    response = client.get("/share/abc", params={"url": encode(TARGET)}, headers={"User-Agent": BOT})
    assert response.text == '<body><meta name="twitter:title" content="Hi"></body>'
    assert client.get("/anything").status_code == 200
    assert session.calls == 1
