"""Pydantic schemas for request/response validation."""

from commerce_assistant.schemas.common import ErrorResponse, HealthResponse

__all__ = [
    "HealthResponse",
    "ErrorResponse",
]
