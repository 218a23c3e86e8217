# parallel_runner/infra/metrics.py
"""
In-process dispatch metrics.

Nothing is exported over the network: the collector is dumped to the log
when the build exits. ``job_metrics`` is the job-lifecycle view the core
records through; ``inc_counter`` stays for adapter-level counters
(uploads, bus errors).
"""
from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from threading import Lock

DEFAULT_HISTOGRAM_WINDOW = 1024


@dataclass
class Histogram:
    """
    Count and sum over every observation; min/max/percentiles over the
    most recent ``window`` observations only, so a long build does not
    keep one float per job.
    """
    window: int = DEFAULT_HISTOGRAM_WINDOW
    count: int = 0
    total: float = 0.0
    recent: deque = field(init=False)

    def __post_init__(self) -> None:
        self.recent = deque(maxlen=self.window)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.recent.append(value)

    def get_stats(self) -> dict:
        if not self.count:
            return {"count": 0, "avg": 0, "min": 0, "max": 0, "p50": 0, "p95": 0}

        ordered = sorted(self.recent)

        def percentile(p: float) -> float:
            return ordered[min(int(len(ordered) * p), len(ordered) - 1)]

        return {
            "count": self.count,
            "avg": self.total / self.count,
            "min": ordered[0],
            "max": ordered[-1],
            "p50": percentile(0.5),
            "p95": percentile(0.95),
        }


class MetricsCollector:
    """Thread-safe counters and windowed histograms keyed by name + labels."""

    def __init__(self, histogram_window: int = DEFAULT_HISTOGRAM_WINDOW):
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, Histogram] = {}
        self._histogram_window = histogram_window
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += amount

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = Histogram(window=self._histogram_window)
            histogram.observe(value)

    def counter_value(self, name: str, labels: dict | None = None) -> int:
        with self._lock:
            return self._counters.get(self._make_key(name, labels), 0)

    def counter_total(self, name: str) -> int:
        """Sum of ``name`` across all label sets."""
        prefix = name + "{"
        with self._lock:
            return sum(v for k, v in self._counters.items() if k == name or k.startswith(prefix))

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: v.get_stats() for k, v in self._histograms.items()},
            }

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


class JobMetrics:
    """
    Job lifecycle counters.

    Every job that passes parsing ends in exactly one of: not permitted,
    invalid, failed (transport / worker / timeout) or completed. A
    completed job whose finalization fails is counted under
    ``finalization_errors`` instead of ``jobs_completed``.
    """

    def __init__(self, collector: MetricsCollector):
        self._c = collector

    def submitted(self) -> None:
        self._c.inc_counter("jobs_submitted")

    def duplicate(self) -> None:
        self._c.inc_counter("jobs_duplicate")

    def not_permitted(self, job_type: str) -> None:
        self._c.inc_counter("jobs_not_permitted", labels={"job_type": job_type})

    def invalid(self, job_type: str) -> None:
        self._c.inc_counter("jobs_invalid", labels={"job_type": job_type})

    def dispatched(self, channel: str) -> None:
        self._c.inc_counter("jobs_dispatched", labels={"channel": channel})

    def failed(self, reason: str) -> None:
        self._c.inc_counter("jobs_failed", labels={"reason": reason})
        if reason == "timeout":
            self._c.inc_counter("jobs_timed_out")

    def completed(self, job_type: str) -> None:
        self._c.inc_counter("jobs_completed", labels={"job_type": job_type})

    def finalization_failed(self, job_type: str) -> None:
        self._c.inc_counter("finalization_errors", labels={"job_type": job_type})

    def response_discarded(self, kind: str) -> None:
        self._c.inc_counter("worker_responses_discarded", labels={"kind": kind})

    def roundtrip(self, seconds: float) -> None:
        self._c.observe_histogram("job_roundtrip_seconds", seconds)

    def summary(self) -> str:
        """One-line outcome summary for the shutdown log."""
        roundtrip = self._c.get_metrics()["histograms"].get("job_roundtrip_seconds", {})
        return (
            f"submitted={self._c.counter_total('jobs_submitted')} "
            f"completed={self._c.counter_total('jobs_completed')} "
            f"failed={self._c.counter_total('jobs_failed')} "
            f"timed_out={self._c.counter_total('jobs_timed_out')} "
            f"not_permitted={self._c.counter_total('jobs_not_permitted')} "
            f"invalid={self._c.counter_total('jobs_invalid')} "
            f"finalization_errors={self._c.counter_total('finalization_errors')} "
            f"roundtrip_p95={roundtrip.get('p95', 0):.3f}s"
        )


# Global collector
_metrics = MetricsCollector()
job_metrics = JobMetrics(_metrics)


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    """Increment an adapter-level counter"""
    _metrics.inc_counter(name, amount, labels or None)
