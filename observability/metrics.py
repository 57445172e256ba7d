"""In-process metrics for the job runner and the resource lifecycle."""
from __future__ import annotations

import threading
from typing import Dict, Optional, Union

MetricValue = Union[float, Dict[str, float]]


class _Metric:
    kind = "metric"

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def snapshot(self) -> MetricValue:  # pragma: no cover - overridden
        raise NotImplementedError


class Counter(_Metric):
    """Monotonically increasing count of events (jobs completed, resources archived)."""

    kind = "counter"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._value = 0.0

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counters only go up")
        with self._lock:
            self._value += amount

    def snapshot(self) -> float:
        with self._lock:
            return self._value


class Gauge(_Metric):
    """Point-in-time level such as queue length or active jobs."""

    kind = "gauge"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._value = 0.0

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def snapshot(self) -> float:
        with self._lock:
            return self._value


class Summary(_Metric):
    """Count, total and maximum of observed values, e.g. job durations in seconds."""

    kind = "summary"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._count = 0
        self._total = 0.0
        self._max = 0.0

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._total += value
            self._max = max(self._max, value)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            mean = self._total / self._count if self._count else 0.0
            return {"count": float(self._count), "sum": self._total, "max": self._max, "mean": mean}


class MetricsRegistry:
    """Metrics keyed by dotted name (``jobs.completed_total``)."""

    def __init__(self) -> None:
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, Counter)

    def gauge(self, name: str) -> Gauge:
        return self._get_or_create(name, Gauge)

    def summary(self, name: str) -> Summary:
        return self._get_or_create(name, Summary)

    def get(self, name: str) -> Optional[_Metric]:
        with self._lock:
            return self._metrics.get(name)

    def snapshot(self, prefix: Optional[str] = None) -> Dict[str, MetricValue]:
        with self._lock:
            metrics = [metric for name, metric in self._metrics.items() if not prefix or name.startswith(prefix)]
        return {metric.name: metric.snapshot() for metric in metrics}

    def _get_or_create(self, name, metric_cls):
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = metric_cls(name)
                self._metrics[name] = metric
            elif not isinstance(metric, metric_cls):
                raise TypeError(f"Metric {name} is already registered as a {metric.kind}")
            return metric


_DEFAULT_REGISTRY = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    return _DEFAULT_REGISTRY


__all__ = ["Counter", "Gauge", "MetricsRegistry", "Summary", "get_registry"]
