"""Rolling latency and cache-hit statistics for resolutions."""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionSample:
    duration_ms: float
    used_cache: bool
    recorded_at: datetime


class PerformanceMonitor:
    """
    Bounded window of the most recent resolution samples.

    Instances are owned by whoever builds them (the app factory, or a test),
    never module-level. Appends from concurrent resolvers are serialised by
    a lock and the deque drops the oldest sample once the window is full.
    """

    def __init__(self, window_size: int = 1000, sla_seconds: float = 60.0):
        self.window_size = window_size
        self.sla_ms = sla_seconds * 1000.0
        self._samples: deque[ResolutionSample] = deque(maxlen=window_size)
        self._lock = threading.Lock()
        self._total_recorded = 0
        self._total_sla_violations = 0

    def record(self, duration_ms: float, used_cache: bool = False) -> bool:
        """Record one resolution. Returns True if it exceeded the SLA."""
        sample = ResolutionSample(
            duration_ms=duration_ms,
            used_cache=used_cache,
            recorded_at=datetime.now(timezone.utc),
        )
        violated = duration_ms > self.sla_ms
        with self._lock:
            self._samples.append(sample)
            self._total_recorded += 1
            if violated:
                self._total_sla_violations += 1
        if violated:
            logger.warning(
                f"SLA violation: resolution took {duration_ms:.1f}ms "
                f"(limit {self.sla_ms:.0f}ms)"
            )
        return violated

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._total_recorded = 0
            self._total_sla_violations = 0

    def get_stats(self) -> dict:
        with self._lock:
            samples = list(self._samples)
            total_recorded = self._total_recorded
            total_violations = self._total_sla_violations

        count = len(samples)
        if count == 0:
            return {
                "count": 0,
                "avg_ms": 0.0,
                "max_ms": 0.0,
                "p95_ms": 0.0,
                "cache_hit_rate": 0.0,
                "sla_ms": self.sla_ms,
                "sla_violations": 0,
                "exceeds_sla": False,
                "total_recorded": total_recorded,
                "total_sla_violations": total_violations,
            }

        durations = sorted(s.duration_ms for s in samples)
        avg_ms = sum(durations) / count
        max_ms = durations[-1]
        p95_ms = durations[min(count - 1, int(round(0.95 * (count - 1))))]
        hits = sum(1 for s in samples if s.used_cache)
        violations = sum(1 for d in durations if d > self.sla_ms)

        return {
            "count": count,
            "avg_ms": round(avg_ms, 3),
            "max_ms": round(max_ms, 3),
            "p95_ms": round(p95_ms, 3),
            "cache_hit_rate": hits / count,
            "sla_ms": self.sla_ms,
            "sla_violations": violations,
            "exceeds_sla": max_ms > self.sla_ms,
            "total_recorded": total_recorded,
            "total_sla_violations": total_violations,
        }
