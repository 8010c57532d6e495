"""
Response envelope returned by every gateway call.

``to_dict()`` is the wire shape: ``{"success", "message", "data"}`` plus an
``"error"`` code on failure.  ``http_status`` carries the status code the
transport layer should use.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fulfillment_kernel.domain.dtos import to_primitive
from fulfillment_kernel.exceptions import FulfillmentKernelError


@dataclass(frozen=True)
class OperationResult:
    success: bool
    message: str
    data: Any = None
    error: str | None = None
    http_status: int = 200

    @classmethod
    def ok(cls, data: Any = None, message: str = "OK", http_status: int = 200) -> OperationResult:
        return cls(success=True, message=message, data=data, http_status=http_status)

    @classmethod
    def failure(cls, exc: FulfillmentKernelError) -> OperationResult:
        return cls(
            success=False,
            message=str(exc),
            error=exc.code,
            http_status=exc.http_status,
        )

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "data": to_primitive(self.data),
        }
        if not self.success:
            body["error"] = self.error
        return body
