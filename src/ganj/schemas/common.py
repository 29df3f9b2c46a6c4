"""Shared response schemas: the entity base and the error envelope."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """Schemas built straight from service dataclasses or ORM rows."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorDetail(BaseModel):
    code: str = Field(..., description="Machine-readable error code, e.g. POET_NOT_FOUND")
    message: str = Field(..., description="Human-readable description")
    request_id: str | None = Field(None, description="X-Request-ID of the failed call")
    details: dict[str, Any] | None = Field(
        None, description="Error context such as the missing id or the upstream status"
    )


class ErrorResponse(BaseModel):
    """Body of every non-2xx response raised through ``GanjError``."""

    error: ErrorDetail

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "POET_NOT_FOUND",
                    "message": "Poet with ID 999 not found",
                    "request_id": "3f1c2a9e-5d7b-4c61-9a0e-2b8f7d6c4e10",
                    "details": {"poet_id": 999},
                }
            }
        }
    )
