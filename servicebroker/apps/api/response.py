from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


BROKER_API_VERSION = "2.13"


class CatalogResponse(BaseModel):
    services: list[dict[str, Any]]


class ProvisionResponse(BaseModel):
    dashboard_url: str | None = None


class LastOperationResponse(BaseModel):
    state: str
    description: str = ""


class BindingResponse(BaseModel):
    credentials: dict[str, Any] = Field(default_factory=dict)


class EmptyResponse(BaseModel):
    pass


class ErrorResponse(BaseModel):
    # Platforms read the machine code only for a few well-known failures.
    error: str | None = None
    description: str


def error_body(description: str, code: str | None = None) -> dict[str, Any]:
    return ErrorResponse(error=code, description=description).model_dump(exclude_none=True)


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: {"model": ErrorResponse, "description": "Missing or invalid broker credentials"},
    422: {"model": ErrorResponse, "description": "Malformed request"},
    500: {"model": ErrorResponse, "description": "Internal error"},
}
