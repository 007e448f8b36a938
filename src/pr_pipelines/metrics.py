"""Metrics collection for the pipeline controller."""

from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway

logger = structlog.get_logger()


class ControllerMetrics:
    """Prometheus metrics for the pipeline controller.

    Each instance owns its registry unless one is passed in, so warm Lambda
    containers and tests can create instances without name clashes.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.invocations_total = Counter(
            'pr_pipelines_invocations_total',
            'Total controller invocations',
            ['status'],
            registry=self.registry,
        )
        self.duration_seconds = Histogram(
            'pr_pipelines_invocation_duration_seconds',
            'Controller invocation duration',
            registry=self.registry,
        )
        self.reconciliations_total = Counter(
            'pr_pipelines_reconciliations_total',
            'Reconciliations by action taken and outcome',
            ['action', 'outcome'],
            registry=self.registry,
        )
        self.remote_errors_total = Counter(
            'pr_pipelines_remote_errors_total',
            'CodePipeline errors by operation and error code',
            ['operation', 'error_code'],
            registry=self.registry,
        )

    def record_invocation(self, status: str, duration: float):
        """Record a finished invocation."""
        self.invocations_total.labels(status=status).inc()
        self.duration_seconds.observe(duration)

    def record_reconciliation(self, action: str, ok: bool):
        """Record the action a reconciliation took."""
        outcome = "ok" if ok else "error"
        self.reconciliations_total.labels(action=action, outcome=outcome).inc()

    def record_remote_error(self, operation: str, error_code: str):
        """Record a CodePipeline error, including retried ones."""
        self.remote_errors_total.labels(operation=operation, error_code=error_code).inc()

    def push(self, gateway_url: Optional[str]):
        """Push metrics to a Prometheus gateway if configured."""
        if not gateway_url:
            return
        try:
            push_to_gateway(gateway_url, job="pr-pipelines", registry=self.registry)
            logger.debug("Metrics pushed to gateway", gateway_url=gateway_url)
        except Exception as e:
            logger.warning("Failed to push metrics", error=str(e))
