"""
In-process metrics for invoice intake.

Three families are tracked:
- outcomes: one count per (flavor, action) pair produced by an orchestrator
- extractions: which route handled an attachment (structured, text) or skipped it
- timings: duration samples per stage ("extract", "reconcile", "attachment")

Nothing is exported anywhere; `get_summary()` is printed by the CLI runner
with --metrics and read by tests.
"""

from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Deque, Dict, Optional
import statistics


# Samples kept per stage for average/p95
MAX_TIMING_SAMPLES = 1000

EXTRACTION_ROUTES = ("structured", "text")


@dataclass
class StageTimings:
    """Rolling duration samples for one stage."""
    samples: Deque[float] = field(default_factory=lambda: deque(maxlen=MAX_TIMING_SAMPLES))

    def add(self, duration_ms: float) -> None:
        self.samples.append(duration_ms)

    @property
    def average_ms(self) -> float:
        return statistics.mean(self.samples) if self.samples else 0.0

    @property
    def p95_ms(self) -> float:
        if not self.samples:
            return 0.0
        ordered = sorted(self.samples)
        return ordered[min(int(len(ordered) * 0.95), len(ordered) - 1)]

    def stats(self) -> Dict[str, float]:
        return {
            "average_ms": self.average_ms,
            "p95_ms": self.p95_ms,
            "sample_count": len(self.samples),
        }


class MetricsCollector:
    """
    Process-wide metrics collector.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_outcome("invoice", "created-and-assigned")
        metrics.record_processing_time("reconcile", 4.2)
        print(metrics.get_summary()["outcomes"]["total"])
    """

    _instance: Optional["MetricsCollector"] = None
    _instance_lock = Lock()

    def __init__(self):
        self._lock = Lock()
        self._outcomes: Counter = Counter()
        self._extractions: Counter = Counter()
        self._timings: Dict[str, StageTimings] = defaultdict(StageTimings)

    @classmethod
    def instance(cls) -> "MetricsCollector":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def record_outcome(self, flavor: str, action: str):
        with self._lock:
            self._outcomes[(flavor, action)] += 1

    def record_extraction(self, route: Optional[str]):
        """Count an extraction attempt; a route of None means it was skipped."""
        with self._lock:
            self._extractions[route if route in EXTRACTION_ROUTES else "skipped"] += 1

    def record_processing_time(self, stage: str, duration_ms: float):
        with self._lock:
            self._timings[stage].add(duration_ms)

    def get_timing_stats(self, stage: str) -> Dict[str, float]:
        with self._lock:
            timings = self._timings.get(stage)
            return timings.stats() if timings else StageTimings().stats()

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            by_flavor: Dict[str, Dict[str, int]] = defaultdict(dict)
            for (flavor, action), count in self._outcomes.items():
                by_flavor[flavor][action] = count

            return {
                "outcomes": {
                    "total": sum(self._outcomes.values()),
                    "by_flavor": dict(by_flavor),
                },
                "extractions": {
                    "structured": self._extractions["structured"],
                    "text": self._extractions["text"],
                    "skipped": self._extractions["skipped"],
                },
                "timings": {stage: timings.stats() for stage, timings in self._timings.items()},
            }


def get_metrics() -> MetricsCollector:
    return MetricsCollector.instance()


def record_outcome(flavor: str, action: str):
    get_metrics().record_outcome(flavor, action)


def record_extraction(route: Optional[str]):
    get_metrics().record_extraction(route)


def record_processing_time(stage: str, duration_ms: float):
    get_metrics().record_processing_time(stage, duration_ms)
