"""In-process counters and timers for the proxy, exportable as JSON."""
from __future__ import annotations

import contextlib
import json
import time
from collections import Counter
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional

import structlog

LOGGER = structlog.get_logger(__name__)


@dataclass
class TimerStats:
    count: int = 0
    total_ms: int = 0
    max_ms: int = 0

    def observe(self, elapsed_ms: int) -> None:
        self.count += 1
        self.total_ms += elapsed_ms
        self.max_ms = max(self.max_ms, elapsed_ms)


class MetricsRegistry:
    """Counters are created on first increment; unknown names read as zero."""

    def __init__(self) -> None:
        self._counters: Counter[str] = Counter()
        self._timers: Dict[str, TimerStats] = {}

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def get(self, name: str) -> int:
        return self._counters[name]

    def timer_stats(self, name: str) -> TimerStats:
        return self._timers.get(name, TimerStats())

    @contextlib.contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Record the wall time of the block, including early returns."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            self._timers.setdefault(name, TimerStats()).observe(elapsed_ms)
            LOGGER.debug("timer_stop", timer=name, duration_ms=elapsed_ms)

    def cache_hit_ratio(self) -> Optional[float]:
        lookups = self._counters["cache_hits"] + self._counters["cache_misses"] + self._counters["cache_stale"]
        if not lookups:
            return None
        return round(self._counters["cache_hits"] / lookups, 4)

    def snapshot(self) -> Dict[str, object]:
        return {
            "counters": dict(self._counters),
            "timers": {name: asdict(stats) for name, stats in self._timers.items()},
            "cache_hit_ratio": self.cache_hit_ratio(),
        }

    def export(self, *, path: Path) -> Path:
        """Write the snapshot to ``path``, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            **self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        LOGGER.info("metrics_exported", path=str(path))
        return path
