"""
Shared response shapes: the error envelope and the health check.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    error_code: str = Field(..., description="Machine-readable code, e.g. RESERVATION_EXPIRED")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = None
    suggestions: Optional[List[str]] = None
    retry_after: Optional[int] = Field(None, description="Seconds to wait before retrying")


class ErrorResponse(BaseModel):
    """Body of every 4xx/5xx produced by the error middleware."""

    error: ErrorDetail
    error_id: str = Field(..., description="Identifier to quote when reporting the error")
    timestamp: str

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": {
                        "error_code": "RESERVATION_EXPIRED",
                        "message": "Reservation 42 has expired (30 minutes limit). "
                                   "The ticket has been offered to the next person on the waitlist.",
                        "details": {"transaction_id": 42, "window_minutes": 30},
                        "suggestions": ["Join the waitlist again"]
                    },
                    "error_id": "5f0c6c1e-9a55-4c8e-a1f4-3f1d0f6f2b7a",
                    "timestamp": "2024-05-01T18:30:00+00:00"
                }
            ]
        }
    }


class HealthStatus(BaseModel):
    status: str
    service: str
    version: str
    timestamp: str
