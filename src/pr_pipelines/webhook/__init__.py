"""GitHub webhook handling for the pipeline controller.

This module receives and parses the webhook envelope handed to the Lambda
function. Only pull_request deliveries are turned into events; every other
event kind is reported back as unhandled.
"""

from .handler import MalformedPayloadError, WebhookParser
from .models import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    PULL_REQUEST_EVENT,
    PullRequestEvent,
    PullRequestState,
    WebhookEnvelope,
)

__all__ = [
    "DELIVERY_HEADER",
    "EVENT_HEADER",
    "PULL_REQUEST_EVENT",
    "MalformedPayloadError",
    "PullRequestEvent",
    "PullRequestState",
    "WebhookEnvelope",
    "WebhookParser",
]
