"""
Ayo Metrics — in-process counters, gauges and latency histograms.

No exporter. The host UI (or a test) reads snapshot().

Usage:
    from ayo_offline.core.metrics import metrics

    metrics.inc("router.requests", labels={"backend": "openai"})
    metrics.observe("router.ttfc_ms", 231.4, labels={"backend": "openai"})
    metrics.gauge_inc("rpc.host.in_flight")
"""

from __future__ import annotations

import time
from collections import defaultdict, deque


class MetricsCollector:
    """Counters, gauges and rolling-window histograms keyed by name + labels."""

    HISTOGRAM_MAX_SAMPLES = 500

    _instance: "MetricsCollector | None" = None

    @classmethod
    def get(cls) -> "MetricsCollector":
        """Return the process-wide singleton."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = defaultdict(float)
        self._histograms: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=self.HISTOGRAM_MAX_SAMPLES)
        )
        self._started_at = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        self._counters[self._key(name, labels)] += value

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    def gauge_inc(self, name: str, value: float = 1.0, labels: dict | None = None) -> None:
        self._gauges[self._key(name, labels)] += value

    def gauge_dec(self, name: str, value: float = 1.0, labels: dict | None = None) -> None:
        self._gauges[self._key(name, labels)] -= value

    def gauge(self, name: str, labels: dict | None = None) -> float:
        return self._gauges.get(self._key(name, labels), 0.0)

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Record one observation (e.g. a latency in ms)."""
        self._histograms[self._key(name, labels)].append(value)

    def snapshot(self) -> dict:
        """Counters, gauges and p50/p95/max per histogram."""
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
                "max": ordered[-1],
            }
        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()

    def _key(self, name: str, labels: dict | None) -> str:
        # "router.requests{backend=openai}"
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


metrics = MetricsCollector.get()
