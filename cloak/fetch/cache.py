"""Key-value stores holding fetched preview sources."""
from __future__ import annotations

import asyncio
import base64
import binascii
import os
import tempfile
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol

import orjson

_CACHE_SCHEMA_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CacheEntry:
    """A stored origin response and the moment it was captured."""

    body: bytes
    headers: Dict[str, str]
    captured_at: datetime = field(default_factory=utcnow)

    def age(self, now: datetime) -> timedelta:
        return now - self.captured_at

    def is_fresh(self, now: datetime, window: timedelta) -> bool:
        """Entries at or beyond ``window`` are stale."""
        return self.age(now) < window

    def to_payload(self) -> Dict[str, object]:
        return {
            "body": base64.b64encode(self.body).decode("ascii"),
            "headers": self.headers,
            "captured_at": self.captured_at.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, object]) -> "CacheEntry":
        captured_at = datetime.fromisoformat(str(payload["captured_at"]))
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        return cls(
            body=base64.b64decode(str(payload["body"])),
            headers=dict(payload.get("headers") or {}),
            captured_at=captured_at,
        )


class CacheStore(Protocol):
    """Lookup returns whatever is present, stale or not."""

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        ...

    async def store(self, key: str, entry: CacheEntry) -> None:
        ...


class MemoryCacheStore:
    """Process-local store evicting the least recently used entry."""

    def __init__(self, *, max_entries: int = 1024) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    async def store(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)


class DiskCacheStore(MemoryCacheStore):
    """Memory store mirrored to a JSON index on disk after every write."""

    def __init__(self, path: Path, *, max_entries: int = 1024) -> None:
        super().__init__(max_entries=max_entries)
        self._path = path
        self._write_lock = asyncio.Lock()
        if path.exists():
            try:
                payload = orjson.loads(path.read_bytes())
            except orjson.JSONDecodeError:
                payload = {}
            if isinstance(payload, dict) and payload.get("version") == _CACHE_SCHEMA_VERSION:
                data = payload.get("data")
                for key, raw in (data.items() if isinstance(data, dict) else ()):
                    try:
                        self._entries[key] = CacheEntry.from_payload(raw)
                    except (AttributeError, KeyError, TypeError, ValueError, binascii.Error):
                        continue
        else:
            path.parent.mkdir(parents=True, exist_ok=True)

    async def store(self, key: str, entry: CacheEntry) -> None:
        await super().store(key, entry)
        await self._persist()

    async def _persist(self) -> None:
        async with self._write_lock:
            # Serialise on the loop so the index cannot change mid-dump.
            payload = {
                "version": _CACHE_SCHEMA_VERSION,
                "data": {key: entry.to_payload() for key, entry in self._entries.items()},
            }
            await asyncio.to_thread(self._replace_index, orjson.dumps(payload))

    def _replace_index(self, data: bytes) -> None:
        with tempfile.NamedTemporaryFile(dir=self._path.parent, prefix=self._path.name, suffix=".tmp", delete=False) as handle:
            handle.write(data)
        os.replace(handle.name, self._path)
