"""
Career Sewa API — Standard Response Envelope
==============================================

What:  The single JSON shape returned by every JSON endpoint.
Why:   Clients parse one structure for success and failure alike.
How:   APIResponse is a Pydantic model serialized with camelCase aliases;
       helper constructors mirror the status codes the API actually uses.

Wire format:
    {
        "success": true,
        "statusCode": 200,
        "message": "Service is healthy",
        "data": {...} | null,
        "timestamp": "2024-01-15T12:00:00.000000Z"
    }
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class APIResponse(BaseModel):
    """
    Uniform response envelope.

    `success` is derived from the status class by the helper constructors;
    anything below 400 is a success.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(description="Whether the request succeeded")
    status_code: int = Field(alias="statusCode", description="HTTP status code")
    message: str = Field(description="Human-readable outcome")
    data: Optional[Any] = Field(default=None, description="Payload, null when absent")
    timestamp: datetime = Field(default_factory=_utcnow, description="UTC ISO-8601")

    # ── Success constructors ──────────────────────────────────────────────

    @classmethod
    def ok(
        cls,
        data: Any = None,
        message: str = "Operation successful",
        status_code: int = 200,
    ) -> "APIResponse":
        return cls(success=True, status_code=status_code, message=message, data=data)

    @classmethod
    def created(
        cls, data: Any = None, message: str = "Resource created successfully"
    ) -> "APIResponse":
        return cls.ok(data, message, status_code=201)

    # ── Failure constructors ──────────────────────────────────────────────

    @classmethod
    def error(cls, status_code: int, message: str, data: Any = None) -> "APIResponse":
        return cls(success=False, status_code=status_code, message=message, data=data)

    @classmethod
    def service_unavailable(
        cls, message: str = "Service unavailable", data: Any = None
    ) -> "APIResponse":
        return cls.error(503, message, data)

    # ── Serialization ─────────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_response(self, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        """Render as a JSONResponse whose HTTP status matches `statusCode`."""
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict(),
            headers=headers,
        )
