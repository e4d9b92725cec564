"""
Registration helpers for Prometheus collectors.

Metric modules can be imported more than once in a process (uvicorn
--reload, test collection), and prometheus_client refuses to register a
name twice. These helpers hand back the collector that is already
registered instead.
"""

from typing import Any, TypeVar

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

M = TypeVar("M", Counter, Gauge, Histogram)


def _get_or_create(
    metric_cls: type[M], name: str, doc: str, labels: list[str] | None, **kwargs: Any
) -> M:
    """
    Create a collector, or return the one registered under `name`.

    Args:
        metric_cls: Counter, Gauge or Histogram.
        name: Metric name (counters without the `_total` suffix work too).
        doc: Help text.
        labels: Label names, if any.
        **kwargs: Passed to the collector, e.g. histogram `buckets`.
    """
    try:
        return metric_cls(name, doc, labels or [], **kwargs)
    except ValueError:
        # Counters register "<name>_total"; lookup by both spellings
        existing = REGISTRY._names_to_collectors.get(name)
        if existing is None:
            existing = REGISTRY._names_to_collectors[f"{name}_total"]
        return existing  # type: ignore[no-any-return]


def _get_or_create_counter(name: str, doc: str, labels: list[str] | None = None) -> Counter:
    return _get_or_create(Counter, name, doc, labels)


def _get_or_create_gauge(name: str, doc: str, labels: list[str] | None = None) -> Gauge:
    return _get_or_create(Gauge, name, doc, labels)


def _get_or_create_histogram(
    name: str,
    doc: str,
    labels: list[str] | None = None,
    buckets: tuple[float, ...] | None = None,
) -> Histogram:
    if buckets:
        return _get_or_create(Histogram, name, doc, labels, buckets=buckets)
    return _get_or_create(Histogram, name, doc, labels)
