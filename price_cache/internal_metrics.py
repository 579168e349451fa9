from __future__ import annotations

from dataclasses import dataclass
from threading import Lock


@dataclass
class SourceMetrics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    latency_total_ms: float = 0.0

    def avg_latency_ms(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.latency_total_ms / self.total_requests


class MetricsCollector:
    def __init__(self):
        self._per_source: dict[str, SourceMetrics] = {}
        self._cache_hits = 0
        self._cache_misses = 0
        self._inflight_joins = 0
        self._lock = Lock()

    def _get(self, source: str) -> SourceMetrics:
        if source not in self._per_source:
            self._per_source[source] = SourceMetrics()
        return self._per_source[source]

    def record_request(self, source: str, success: bool, latency_ms: float):
        with self._lock:
            m = self._get(source)
            m.total_requests += 1
            m.latency_total_ms += max(latency_ms, 0.0)
            if success:
                m.successful_requests += 1
            else:
                m.failed_requests += 1

    def record_lookup(self, hits: int, misses: int, joins: int = 0):
        with self._lock:
            self._cache_hits += hits
            self._cache_misses += misses
            self._inflight_joins += joins

    def source_status(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            out: dict[str, dict[str, float | int]] = {}
            for name, m in self._per_source.items():
                failure_rate = 0.0 if m.total_requests == 0 else (m.failed_requests / m.total_requests)
                out[name] = {
                    "total_requests": m.total_requests,
                    "successful_requests": m.successful_requests,
                    "failed_requests": m.failed_requests,
                    "failure_rate": round(failure_rate, 4),
                    "average_latency_ms": round(m.avg_latency_ms(), 3),
                }
            return out

    def global_metrics(self) -> dict[str, float | int | dict]:
        per = self.source_status()
        with self._lock:
            hits, misses, joins = self._cache_hits, self._cache_misses, self._inflight_joins
        lookups = hits + misses
        return {
            "upstream_requests": sum(v["total_requests"] for v in per.values()),
            "cache_hits": hits,
            "cache_misses": misses,
            "cache_hit_rate": 0.0 if lookups == 0 else round(hits / lookups, 4),
            "inflight_joins": joins,
            "per_source": per,
        }
