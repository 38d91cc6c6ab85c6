"""In-memory registry of the service's metrics."""
from __future__ import annotations

from threading import Lock
from typing import Callable, Iterable, MutableMapping, Tuple, TypeVar

from .base import CounterMetric, DistributionMetric, Metric

_MetricT = TypeVar("_MetricT", bound=Metric)


class MetricsRegistry:
    """Create metrics once by name and hand out the same instance afterwards."""

    def __init__(self) -> None:
        self._metrics: MutableMapping[str, Metric] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str, kind: type[_MetricT], factory: Callable[[], _MetricT]) -> _MetricT:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = factory()
        if not isinstance(metric, kind):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def counter(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> CounterMetric:
        return self._get_or_create(
            name,
            CounterMetric,
            lambda: CounterMetric(name, description=description, label_names=label_names),
        )

    def distribution(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> DistributionMetric:
        return self._get_or_create(
            name,
            DistributionMetric,
            lambda: DistributionMetric(name, description=description, label_names=label_names),
        )

    def metrics(self) -> Tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())
