"""Prometheus metrics for the triage service.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- triage_webhook_events_total: Counter of deliveries by kind and response status
- triage_labels_applied_total: Counter of labels attached to issues
- triage_usage_gated_total: Counter of labeling requests refused for usage
- triage_engineer_runs_total: Counter of engineer runs by outcome
- triage_engineer_run_duration_seconds: Histogram of engineer run time
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


logger = logging.getLogger(__name__)


# Engineer runs range from a few seconds to the sandbox command timeout
# multiplied by the step budget
ENGINEER_DURATION_BUCKETS = (
    1.0,
    5.0,
    15.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1800.0,
    3600.0,
)


class TriageMetrics:
    """Container for all triage Prometheus metrics.

    Supports custom registries so tests can assert on counters without
    touching the process-wide default registry.

    Attributes:
        registry: The Prometheus registry for these metrics.
        webhook_events_total: Counter labelled by event kind and status.
        labels_applied_total: Counter of attached labels.
        usage_gated_total: Counter labelled by whether a warning was opened.
        engineer_runs_total: Counter labelled by outcome.
        engineer_run_duration_seconds: Histogram of engineer run time.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.webhook_events_total = Counter(
            "triage_webhook_events_total",
            "Total number of webhook deliveries handled",
            labelnames=["kind", "status"],
            registry=self.registry,
        )

        self.labels_applied_total = Counter(
            "triage_labels_applied_total",
            "Total number of labels attached to issues",
            registry=self.registry,
        )

        self.usage_gated_total = Counter(
            "triage_usage_gated_total",
            "Total number of labeling requests refused for usage",
            labelnames=["warned"],
            registry=self.registry,
        )

        self.engineer_runs_total = Counter(
            "triage_engineer_runs_total",
            "Total number of engineer runs",
            labelnames=["outcome"],
            registry=self.registry,
        )

        self.engineer_run_duration_seconds = Histogram(
            "triage_engineer_run_duration_seconds",
            "Time spent in engineer runs in seconds",
            buckets=ENGINEER_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_webhook_event(self, kind: str, status: int) -> None:
        """Record a handled delivery.

        Args:
            kind: Event kind, e.g. "issues.opened" or "other".
            status: HTTP status returned to GitHub.
        """
        self.webhook_events_total.labels(kind=kind, status=str(status)).inc()

    def record_label_applied(self) -> None:
        self.labels_applied_total.inc()

    def record_usage_gated(self, warned: bool) -> None:
        """Record a refused labeling request.

        Args:
            warned: Whether this request opened the billing-warning issue.
        """
        self.usage_gated_total.labels(warned=str(warned).lower()).inc()

    def record_engineer_run(self, success: bool, duration_seconds: float) -> None:
        """Record a finished engineer run.

        Args:
            success: Whether the run produced a final answer.
            duration_seconds: Wall time from provisioning to release.
        """
        outcome = "success" if success else "failure"
        self.engineer_runs_total.labels(outcome=outcome).inc()
        self.engineer_run_duration_seconds.observe(duration_seconds)


_default_metrics: Optional[TriageMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> TriageMetrics:
    """Get or create the metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        TriageMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return TriageMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = TriageMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint.

    Args:
        registry: Optional Prometheus registry. If None, uses the
                  default REGISTRY.

    Returns:
        bytes: Prometheus metrics in text format.
    """
    return generate_latest(registry or REGISTRY)
