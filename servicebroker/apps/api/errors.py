from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from servicebroker.apps.api.response import error_body
from servicebroker.core.errors import (
    AppGuidRequiredError,
    AsyncRequiredError,
    BindingAlreadyExistsError,
    BindingDoesNotExistError,
    BrokerError,
    InstanceAlreadyExistsError,
    InstanceDoesNotExistError,
    InstanceLimitExceededError,
    PlanChangeNotSupportedError,
    RawParametersInvalidError,
)


logger = logging.getLogger(__name__)

# Per-operation status codes; anything unlisted is a 500.
_STATUS_BY_OPERATION: dict[str, dict[type[BrokerError], int]] = {
    "provision": {
        InstanceAlreadyExistsError: 409,
        InstanceLimitExceededError: 500,
        AsyncRequiredError: 422,
        RawParametersInvalidError: 422,
    },
    "deprovision": {
        InstanceDoesNotExistError: 410,
        AsyncRequiredError: 422,
    },
    "bind": {
        InstanceDoesNotExistError: 404,
        BindingAlreadyExistsError: 409,
        AppGuidRequiredError: 422,
    },
    "unbind": {
        InstanceDoesNotExistError: 410,
        BindingDoesNotExistError: 410,
    },
    "last_operation": {
        InstanceDoesNotExistError: 404,
    },
    "update": {
        AsyncRequiredError: 422,
        PlanChangeNotSupportedError: 422,
    },
}

_ERROR_CODES: dict[type[BrokerError], str] = {
    AsyncRequiredError: "AsyncRequired",
    PlanChangeNotSupportedError: "PlanChangeNotSupported",
}


def _lookup(table: dict, exc: Exception):
    for cls in type(exc).__mro__:
        if cls in table:
            return table[cls]
    return None


def status_for(operation: str, exc: Exception) -> int:
    return _lookup(_STATUS_BY_OPERATION.get(operation, {}), exc) or 500


def broker_error_response(operation: str, exc: Exception) -> JSONResponse:
    status_code = status_for(operation, exc)
    code = _lookup(_ERROR_CODES, exc) if status_code != 500 else None
    if status_code == 500:
        logger.error("broker_request_failed operation=%s error=%s: %s", operation, type(exc).__name__, exc)
    return JSONResponse(content=error_body(str(exc), code), status_code=status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        content=error_body(str(exc.detail)),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        content=error_body(str(exc.detail)),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed JSON and wrongly typed fields both land here.
    messages = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    return JSONResponse(content=error_body("; ".join(messages) or "invalid request"), status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content=error_body(str(exc) or "Internal Server Error"), status_code=500)
