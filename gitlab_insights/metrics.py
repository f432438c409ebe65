"""
Prometheus-style metrics for GitLab API usage.

Each client gets its own ApiMetrics so parallel runs and tests do not
share counters. Metrics are exported in Prometheus text format to
``metrics.prom`` at the end of a run.
"""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from threading import Lock

from .types import RequestAttempt


class MetricType:
    """Metric type constants."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class Metric:
    """Base metric class."""

    def __init__(self, name: str, help_text: str, metric_type: str, labels: list[str] | None = None):
        self.name = name
        self.help_text = help_text
        self.metric_type = metric_type
        self.labels = labels or []
        self.values: dict[tuple, float] = defaultdict(float)
        self.lock = Lock()

    def _make_key(self, labels: dict[str, str] | None = None) -> tuple:
        if not labels:
            return ()
        return tuple(labels.get(label, "") for label in self.labels)

    def _format_labels(self, key: tuple) -> str:
        if not key:
            return ""
        label_pairs = [f'{label}="{value}"' for label, value in zip(self.labels, key)]
        return "{" + ",".join(label_pairs) + "}"

    def _header(self) -> list[str]:
        return [
            f"# HELP {self.name} {self.help_text}",
            f"# TYPE {self.name} {self.metric_type}",
        ]

    def to_prometheus(self) -> str:
        """Convert metric to Prometheus text format."""
        lines = self._header()
        with self.lock:
            for key, value in sorted(self.values.items()):
                lines.append(f"{self.name}{self._format_labels(key)} {value}")
        return "\n".join(lines)


class Counter(Metric):
    """Counter metric - monotonically increasing value."""

    def __init__(self, name: str, help_text: str, labels: list[str] | None = None):
        super().__init__(name, help_text, MetricType.COUNTER, labels)

    def inc(self, amount: float = 1.0, labels: dict[str, str] | None = None) -> None:
        """Increment counter."""
        key = self._make_key(labels)
        with self.lock:
            self.values[key] += amount

    def get(self, labels: dict[str, str] | None = None) -> float:
        """Get current counter value."""
        key = self._make_key(labels)
        with self.lock:
            return self.values[key]


class Gauge(Metric):
    """Gauge metric - value that can go up or down."""

    def __init__(self, name: str, help_text: str, labels: list[str] | None = None):
        super().__init__(name, help_text, MetricType.GAUGE, labels)

    def set(self, value: float, labels: dict[str, str] | None = None) -> None:
        """Set gauge value."""
        key = self._make_key(labels)
        with self.lock:
            self.values[key] = value

    def get(self, labels: dict[str, str] | None = None) -> float:
        """Get current gauge value."""
        key = self._make_key(labels)
        with self.lock:
            return self.values[key]


class Histogram(Metric):
    """Histogram metric - distribution of values."""

    # Latency buckets in seconds
    DEFAULT_BUCKETS = [0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]

    def __init__(
        self,
        name: str,
        help_text: str,
        labels: list[str] | None = None,
        buckets: list[float] | None = None,
    ):
        super().__init__(name, help_text, MetricType.HISTOGRAM, labels)
        self.buckets = sorted(buckets or self.DEFAULT_BUCKETS)
        self.sums: dict[tuple, float] = defaultdict(float)
        self.counts: dict[tuple, int] = defaultdict(int)
        self.bucket_counts: dict[tuple, dict[float, int]] = defaultdict(lambda: defaultdict(int))

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        """Observe a value."""
        key = self._make_key(labels)
        with self.lock:
            self.sums[key] += value
            self.counts[key] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self.bucket_counts[key][bucket] += 1
                    break

    def to_prometheus(self) -> str:
        """Convert histogram to Prometheus text format."""
        lines = self._header()
        with self.lock:
            for key in sorted(self.sums.keys()):
                base_labels = self._format_labels(key)
                prefix = base_labels[:-1] + "," if base_labels else "{"

                cumulative = 0
                for bucket in self.buckets:
                    cumulative += self.bucket_counts[key].get(bucket, 0)
                    lines.append(f'{self.name}_bucket{prefix}le="{bucket}"}} {cumulative}')
                lines.append(f'{self.name}_bucket{prefix}le="+Inf"}} {self.counts[key]}')
                lines.append(f"{self.name}_sum{base_labels} {self.sums[key]}")
                lines.append(f"{self.name}_count{base_labels} {self.counts[key]}")
        return "\n".join(lines)


class MetricsRegistry:
    """Registry for a set of metrics."""

    def __init__(self):
        self.metrics: dict[str, Metric] = {}
        self.lock = Lock()

    def register(self, metric: Metric) -> Metric:
        """Register a metric."""
        with self.lock:
            if metric.name in self.metrics:
                raise ValueError(f"Metric {metric.name} already registered")
            self.metrics[metric.name] = metric
        return metric

    def get(self, name: str) -> Metric | None:
        """Get a metric by name."""
        with self.lock:
            return self.metrics.get(name)

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        with self.lock:
            for metric in sorted(self.metrics.values(), key=lambda m: m.name):
                lines.append(metric.to_prometheus())
                lines.append("")
        return "\n".join(lines)


def endpoint_label(endpoint: str) -> str:
    """
    Collapse an endpoint into a low-cardinality label.

    Numeric path segments become ``:id`` and the query string is dropped,
    so ``/projects/42/merge_requests?state=merged`` becomes
    ``/projects/:id/merge_requests``.
    """
    path = endpoint.split("?", 1)[0]
    parts = [":id" if part.isdigit() else part for part in path.split("/")]
    return "/".join(parts)


class ApiMetrics:
    """Request metrics collected by one GitLabClient."""

    def __init__(self):
        self.registry = MetricsRegistry()
        self.requests_total: Counter = self.registry.register(
            Counter(
                "gitlab_api_requests_total",
                "Total number of GitLab API request attempts",
                labels=["method", "endpoint", "status_code"],
            )
        )
        self.request_duration_seconds: Histogram = self.registry.register(
            Histogram(
                "gitlab_api_request_duration_seconds",
                "GitLab API request duration in seconds",
                labels=["method", "endpoint"],
            )
        )
        self.retries_total: Counter = self.registry.register(
            Counter(
                "gitlab_api_retries_total",
                "Request attempts beyond the first",
                labels=["endpoint"],
            )
        )
        self.rate_limit_remaining: Gauge = self.registry.register(
            Gauge(
                "gitlab_api_rate_limit_remaining",
                "Remaining GitLab API rate limit as reported by the server",
            )
        )

    def record_attempt(self, attempt: RequestAttempt) -> None:
        """Record one HTTP attempt."""
        endpoint = endpoint_label(attempt.endpoint)
        status = str(attempt.status_code) if attempt.status_code is not None else "error"
        self.requests_total.inc(labels={"method": attempt.method, "endpoint": endpoint, "status_code": status})
        self.request_duration_seconds.observe(
            attempt.latency_seconds, labels={"method": attempt.method, "endpoint": endpoint}
        )
        if attempt.attempt > 1:
            self.retries_total.inc(labels={"endpoint": endpoint})

    def to_prometheus(self) -> str:
        """Metrics in Prometheus exposition format."""
        return self.registry.to_prometheus()

    def write(self, path: Path) -> None:
        """Write metrics to a file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_prometheus(), encoding="utf-8")
