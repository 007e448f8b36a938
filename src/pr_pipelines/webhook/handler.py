"""GitHub webhook parsing for the pipeline controller.

This module provides the WebhookParser class that turns the raw Lambda
event into a WebhookEnvelope and, for pull request deliveries, into a
PullRequestEvent. Signature validation happens upstream of the function,
so incoming deliveries are trusted.

GitHub pull_request payloads nest the pull request under "pull_request":
{
  "action": "opened",
  "number": 42,
  "pull_request": {
    "number": 42,
    "state": "open",
    "head": {"ref": "feature-x"}
  }
}
The parser also accepts the flattened form where "number", "state" and
"head" sit at the top level of the body.
"""

import json
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from .models import PullRequestEvent, WebhookEnvelope

logger = logging.getLogger(__name__)


class MalformedPayloadError(Exception):
    """Raised when a webhook delivery is missing or has invalid fields."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class WebhookParser:
    """Parser for webhook envelopes and pull request events.

    Unlike a lenient JSON decode, every required field is validated and a
    MalformedPayloadError naming the field is raised, so reconciliation
    never runs on zero-valued data.
    """

    def parse_envelope(self, raw: Any) -> WebhookEnvelope:
        """Parse the raw Lambda event into a WebhookEnvelope.

        Args:
            raw: The Lambda event. Either a dict, or a JSON document as
                 str or bytes.

        Returns:
            WebhookEnvelope with headers and decoded body.

        Raises:
            MalformedPayloadError: If the envelope is not a JSON object,
                the header is not a string mapping, or the body cannot be
                decoded.
        """
        payload = self._decode(raw, "envelope")
        if not isinstance(payload, dict):
            raise MalformedPayloadError(
                f"envelope must be a JSON object, got {type(payload).__name__}"
            )

        header = payload.get("header")
        if header is None:
            header = {}
        if not isinstance(header, dict):
            raise MalformedPayloadError("header must be an object")
        for key, value in header.items():
            if not isinstance(key, str):
                raise MalformedPayloadError(f"header name {key!r} must be a string")
            if not isinstance(value, str):
                raise MalformedPayloadError(f"header {key} must be a string")

        body = payload.get("body")
        if isinstance(body, (str, bytes)):
            body = self._decode(body, "body")

        return WebhookEnvelope(header=header, body=body)

    def parse_pull_request(self, envelope: WebhookEnvelope) -> PullRequestEvent:
        """Parse a pull request lifecycle event from an envelope body.

        Args:
            envelope: An envelope whose event kind is "pull_request".

        Returns:
            PullRequestEvent with number, state, head branch and delivery id.

        Raises:
            MalformedPayloadError: If number, state or head.ref is missing
                or invalid.
        """
        body = envelope.body
        if not isinstance(body, dict):
            raise MalformedPayloadError("body must be an object")

        pull_request = body.get("pull_request")
        if pull_request is None:
            pull_request = body
        elif not isinstance(pull_request, dict):
            raise MalformedPayloadError("pull_request must be an object")

        number = pull_request.get("number")
        # bool is an int subclass; true/false is not a pull request number
        if isinstance(number, bool) or not isinstance(number, int) or number <= 0:
            raise MalformedPayloadError(f"invalid pull request number: {number!r}")

        state = pull_request.get("state")
        if not isinstance(state, str) or not state.strip():
            raise MalformedPayloadError(f"invalid pull request state: {state!r}")

        head_ref = self._extract_head_ref(pull_request.get("head"))

        try:
            event = PullRequestEvent(
                number=number,
                state=state.strip(),
                head_branch=head_ref,
                delivery_id=envelope.delivery_id,
            )
        except ValidationError as e:
            raise MalformedPayloadError(f"invalid pull request event: {e}") from e

        logger.info(
            "Parsed pull request event: number=%s, state=%s, delivery=%s",
            event.number,
            event.state,
            event.delivery_id,
        )
        return event

    def _extract_head_ref(self, head: Any) -> str:
        """Extract head.ref from the pull request payload."""
        if not isinstance(head, Mapping):
            raise MalformedPayloadError("missing pull request head")

        ref = head.get("ref")
        if not isinstance(ref, str) or not ref.strip():
            raise MalformedPayloadError(f"invalid head.ref: {ref!r}")
        return ref.strip()

    def _decode(self, raw: Any, what: str) -> Any:
        """Decode str/bytes JSON, passing other values through."""
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedPayloadError(f"{what} is not valid UTF-8") from e
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError as e:
                raise MalformedPayloadError(f"{what} is not valid JSON: {e.msg}") from e
            except (RecursionError, ValueError) as e:
                raise MalformedPayloadError(f"{what} is not valid JSON: {type(e).__name__}") from e
        return raw
