"""Response envelope returned to the webhook host.

Every invocation produces exactly one ReconciliationResult. The transport
status is always 200: failures are reported in-band through ``status`` and
``Error`` rather than through the transport, so the host always receives a
well-formed response.
"""

import json
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .webhook.models import DELIVERY_HEADER

HTTP_OK = 200


class ResultStatus(str, Enum):
    """In-band outcome of an invocation."""

    OK = "ok"
    ERROR = "error"


class ReconciliationResult(BaseModel):
    """Outbound response envelope.

    Attributes:
        header: Response headers; carries the echoed delivery identifier.
        error: Error message, serialised as "Error" and omitted when empty.
        status: "ok" or "error".
        http_status: Transport status, serialised as "httpStatus".
        request_id: Invocation identifier from the host, as "requestId".
    """

    model_config = ConfigDict(populate_by_name=True)

    header: Dict[str, str] = Field(default_factory=dict)
    error: str = Field(default="", alias="Error")
    status: ResultStatus
    http_status: int = Field(default=HTTP_OK, alias="httpStatus")
    request_id: str = Field(default="", alias="requestId")

    @classmethod
    def ok(cls, request_id: str, delivery_id: Optional[str] = None) -> "ReconciliationResult":
        """Build a successful result echoing the delivery identifier."""
        return cls(
            header=_delivery_header(delivery_id),
            status=ResultStatus.OK,
            request_id=request_id,
        )

    @classmethod
    def failure(
        cls,
        request_id: str,
        message: str,
        delivery_id: Optional[str] = None,
    ) -> "ReconciliationResult":
        """Build an in-band error result."""
        return cls(
            header=_delivery_header(delivery_id),
            error=message,
            status=ResultStatus.ERROR,
            request_id=request_id,
        )

    def to_dict(self) -> Dict[str, object]:
        """Serialise with wire names, dropping an empty Error."""
        data = self.model_dump(by_alias=True, mode="json")
        if not data.get("Error"):
            data.pop("Error", None)
        return data

    def to_json(self) -> str:
        """Serialise to the JSON document returned to the host."""
        return json.dumps(self.to_dict())


def _delivery_header(delivery_id: Optional[str]) -> Dict[str, str]:
    if delivery_id is None:
        return {}
    return {DELIVERY_HEADER: delivery_id}
