"""GitHub webhook event models for the pipeline controller.

This module defines the data models for the webhook envelope delivered to
the Lambda function and for the pull request lifecycle event extracted
from it.

The envelope carries the GitHub request headers next to the webhook body:
{
  "header": {"X-GitHub-Event": "pull_request", "X-GitHub-Delivery": "..."},
  "body": {"number": 42, "state": "open", "head": {"ref": "feature-x"}}
}
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"
PULL_REQUEST_EVENT = "pull_request"


class PullRequestState(str, Enum):
    """Pull request lifecycle states the controller acts on.

    Attributes:
        OPEN: The pull request is open; its pipeline should exist.
        CLOSED: The pull request is closed or merged; its pipeline should not.
    """

    OPEN = "open"
    CLOSED = "closed"


class WebhookEnvelope(BaseModel):
    """Raw webhook envelope as received from the webhook host.

    Attributes:
        header: HTTP headers of the original GitHub delivery.
        body: The decoded webhook body. Its shape depends on the event kind.
    """

    header: Dict[str, str] = Field(default_factory=dict)
    body: Any = None

    def get_header(self, name: str) -> str:
        """Look up a header case-insensitively.

        Args:
            name: Header name, e.g. "X-GitHub-Event".

        Returns:
            str: The header value, or an empty string when absent.
        """
        if name in self.header:
            return self.header[name]
        lowered = name.lower()
        for key, value in self.header.items():
            if key.lower() == lowered:
                return value
        return ""

    @property
    def event_kind(self) -> str:
        """The GitHub event kind, e.g. "pull_request" or "push"."""
        return self.get_header(EVENT_HEADER)

    @property
    def delivery_id(self) -> str:
        """The GitHub delivery identifier echoed back in the response."""
        return self.get_header(DELIVERY_HEADER)


class PullRequestEvent(BaseModel):
    """Parsed pull request lifecycle event.

    The state is kept as the raw string GitHub sent so that states the
    controller does not know about reach the reconciler instead of failing
    validation.

    Attributes:
        number: The pull request number, unique within the repository.
        state: The pull request state ("open", "closed", ...).
        head_branch: The source branch of the pull request.
        delivery_id: The GitHub delivery identifier, used for tracing.
    """

    model_config = ConfigDict(frozen=True)

    number: int = Field(
        ...,
        gt=0,
        description="The pull request number within the repository",
    )

    state: str = Field(
        ...,
        description="The pull request state as sent by GitHub",
    )

    head_branch: str = Field(
        ...,
        min_length=1,
        description="The head (source) branch of the pull request",
    )

    delivery_id: str = Field(
        default="",
        description="The X-GitHub-Delivery identifier of the webhook",
    )

    @property
    def lifecycle_state(self) -> Optional[PullRequestState]:
        """The state as a PullRequestState, or None when unrecognised."""
        try:
            return PullRequestState(self.state)
        except ValueError:
            return None
