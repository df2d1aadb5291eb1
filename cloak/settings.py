"""Runtime configuration loaded from TOML with environment overrides."""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
DEFAULT_LOGGING_PATH = Path("config/logging.yaml")


@dataclass
class ProxySettings:
    bot_signatures: List[str] = field(default_factory=lambda: ["Twitterbot"])
    query_param: str = "url"
    public_url: Optional[str] = None


@dataclass
class FetchSettings:
    timeout_seconds: float = 10.0
    max_connections: int = 20
    user_agent_fallback: str = "Twitterbot/1.0"
    coalesce_inflight: bool = False


@dataclass
class CacheSettings:
    backend: str = "memory"
    path: Path = Path("data/cache/preview-cache.json")
    max_entries: int = 1024
    freshness_seconds: int = 300

    @property
    def freshness(self) -> timedelta:
        return timedelta(seconds=self.freshness_seconds)


@dataclass
class MetricsSettings:
    export_dir: Optional[Path] = None


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8787


@dataclass
class Settings:
    proxy: ProxySettings = field(default_factory=ProxySettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    metrics: MetricsSettings = field(default_factory=MetricsSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        proxy = dict(data.get("proxy", {}))
        fetch = dict(data.get("fetch", {}))
        cache = dict(data.get("cache", {}))
        metrics = dict(data.get("metrics", {}))
        server = dict(data.get("server", {}))
        if "path" in cache:
            cache["path"] = Path(cache["path"])
        if metrics.get("export_dir"):
            metrics["export_dir"] = Path(metrics["export_dir"])
        settings = cls(
            proxy=ProxySettings(**proxy),
            fetch=FetchSettings(**fetch),
            cache=CacheSettings(**cache),
            metrics=MetricsSettings(**metrics),
            server=ServerSettings(**server),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.cache.backend not in {"memory", "disk"}:
            raise ValueError(f"Unknown cache backend: {self.cache.backend!r}")
        if self.cache.freshness_seconds <= 0:
            raise ValueError("cache.freshness_seconds must be positive")
        if not self.proxy.query_param:
            raise ValueError("proxy.query_param must not be empty")


def _apply_env(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    if signatures := environ.get("CLOAK_BOT_SIGNATURES"):
        data.setdefault("proxy", {})["bot_signatures"] = [s.strip() for s in signatures.split(",") if s.strip()]
    if backend := environ.get("CLOAK_CACHE_BACKEND"):
        data.setdefault("cache", {})["backend"] = backend
    return data


def load_settings(path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read the TOML configuration file, tolerating its absence."""
    environ = os.environ if environ is None else environ
    path = path or Path(environ.get("CLOAK_SETTINGS", DEFAULT_SETTINGS_PATH))
    data: Dict[str, Any] = {}
    if path.exists():
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    return Settings.from_mapping(_apply_env(data, environ))
