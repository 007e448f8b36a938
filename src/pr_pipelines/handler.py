"""Lambda handler for the pull request pipeline controller.

The function receives a webhook envelope for every GitHub delivery, keeps
the CodePipeline pipeline of the pull request in step with its state and
answers with a ReconciliationResult. The answer always carries
httpStatus 200; failures are reported in-band so that the webhook host is
told the delivery arrived while the body says what went wrong.
"""

import logging
import time
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from .codepipeline.client import PipelineServiceClient
from .config import ControllerSettings, get_settings
from .metrics import ControllerMetrics
from .reconciler import Reconciler
from .response import ReconciliationResult
from .webhook.handler import MalformedPayloadError, WebhookParser
from .webhook.models import PULL_REQUEST_EVENT

logger = structlog.get_logger()

_logging_configured = False
_metrics: Optional[ControllerMetrics] = None


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog JSON output on top of stdlib logging."""
    global _logging_configured

    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)
    if _logging_configured:
        return

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _logging_configured = True


def get_metrics() -> ControllerMetrics:
    """Return the metrics of this Lambda container, creating them once."""
    global _metrics
    if _metrics is None:
        _metrics = ControllerMetrics()
    return _metrics


def build_reconciler(settings: ControllerSettings, metrics: Optional[ControllerMetrics] = None) -> Reconciler:
    """Wire a Reconciler from settings."""
    client = PipelineServiceClient.from_settings(settings, metrics=metrics)
    return Reconciler(
        client=client,
        template_name=settings.codepipeline_template,
        oauth_token_provider=settings.require_oauth_token,
        unknown_state_policy=settings.unknown_state_policy,
        metrics=metrics,
    )


def handle_event(
    event: Any,
    request_id: str,
    reconciler: Reconciler,
    parser: Optional[WebhookParser] = None,
) -> ReconciliationResult:
    """
    Turn one webhook envelope into exactly one ReconciliationResult.

    Args:
        event: The raw envelope (dict or JSON text)
        request_id: Invocation identifier supplied by the host
        reconciler: Reconciler acting on pull request events
        parser: Optional WebhookParser (for testing)

    Returns:
        ReconciliationResult; status "error" for unhandled event kinds,
        malformed payloads and failed reconciliations
    """
    parser = parser or WebhookParser()

    try:
        envelope = parser.parse_envelope(event)
    except MalformedPayloadError as e:
        logger.warning("Malformed webhook envelope", reason=e.reason)
        return ReconciliationResult.failure(request_id, f"malformed payload: {e.reason}")

    delivery_id = envelope.delivery_id
    event_kind = envelope.event_kind
    structlog.contextvars.bind_contextvars(delivery_id=delivery_id, event_kind=event_kind)

    if event_kind != PULL_REQUEST_EVENT:
        logger.info("Unhandled event kind", event_kind=event_kind)
        return ReconciliationResult.failure(request_id, f"unhandled {event_kind}")

    try:
        pr_event = parser.parse_pull_request(envelope)
    except MalformedPayloadError as e:
        logger.warning("Malformed pull request payload", reason=e.reason)
        return ReconciliationResult.failure(
            request_id, f"malformed payload: {e.reason}", delivery_id=delivery_id
        )

    outcome = reconciler.reconcile(pr_event)
    if not outcome.ok:
        logger.error(
            "Reconciliation failed",
            pipeline=outcome.pipeline,
            error=outcome.error,
        )
        return ReconciliationResult.failure(
            request_id, outcome.error or "reconciliation failed", delivery_id=delivery_id
        )

    logger.info(
        "Reconciliation completed",
        pipeline=outcome.pipeline,
        action=outcome.action.value,
        detail=outcome.detail,
    )
    return ReconciliationResult.ok(request_id, delivery_id=delivery_id)


def lambda_handler(event, context) -> Dict[str, Any]:
    """
    Lambda entry point.

    Args:
        event: Webhook envelope with "header" and "body"
        context: Lambda context

    Returns:
        The ReconciliationResult as a JSON-compatible dict. Never raises.
    """
    start_time = time.time()
    request_id = getattr(context, "aws_request_id", "") or ""
    metrics = get_metrics()
    gateway_url = None

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    try:
        try:
            settings = get_settings()
        except ValidationError as e:
            configure_logging()
            logger.error("Invalid controller configuration", error=str(e))
            result = ReconciliationResult.failure(
                request_id,
                f"invalid configuration: {e.error_count()} invalid setting(s)",
                delivery_id=_best_effort_delivery_id(event),
            )
        else:
            configure_logging(settings.log_level)
            gateway_url = settings.prometheus_gateway_url
            logger.debug("Controller configuration", **settings.redacted_summary())
            reconciler = build_reconciler(settings, metrics=metrics)
            result = handle_event(event, request_id, reconciler)
    except Exception as e:
        logger.exception("Controller invocation failed")
        result = ReconciliationResult.failure(
            request_id,
            f"internal error: {type(e).__name__}: {e}",
            delivery_id=_best_effort_delivery_id(event),
        )

    metrics.record_invocation(result.status.value, time.time() - start_time)
    metrics.push(gateway_url)
    return result.to_dict()


def _best_effort_delivery_id(event: Any) -> Optional[str]:
    try:
        envelope = WebhookParser().parse_envelope(event)
    except Exception:
        return None
    return envelope.delivery_id or None
