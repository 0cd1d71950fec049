"""Global error handlers: request_id in JSON error bodies and domain error mapping."""

from __future__ import annotations

import logging
from typing import Tuple, Type

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nearu.domain.chat.service import ChatLocked, InvalidMessage
from nearu.domain.matches.service import (
    MatchRequestConflict,
    MatchRequestForbidden,
    MatchRequestNotFound,
)
from nearu.domain.notifications.push import PushDeliveryError
from nearu.domain.proximity.exceptions import (
    InvalidLocation,
    LocationError,
    NearUError,
    StorageUnavailable,
)
from nearu.obs import logging as obs_logging

logger = logging.getLogger(__name__)

# First match wins, so subclasses come before their bases.
_STATUS_BY_ERROR: Tuple[Tuple[Type[NearUError], int], ...] = (
    (InvalidLocation, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidMessage, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ChatLocked, status.HTTP_403_FORBIDDEN),
    (MatchRequestForbidden, status.HTTP_403_FORBIDDEN),
    (MatchRequestNotFound, status.HTTP_404_NOT_FOUND),
    (MatchRequestConflict, status.HTTP_409_CONFLICT),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PushDeliveryError, status.HTTP_502_BAD_GATEWAY),
    (LocationError, status.HTTP_400_BAD_REQUEST),
)


def get_request_id(default: str = "unknown") -> str:
    rid = obs_logging._REQUEST_ID.get()
    return rid or default


def status_for(exc: NearUError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id()}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": get_request_id()}
        return JSONResponse(status_code=422, content=jsonable_errors(payload))

    @app.exception_handler(NearUError)
    async def domain_exc_handler(request: Request, exc: NearUError):  # type: ignore[override]
        code = status_for(exc)
        if code >= 500:
            logger.warning("request failed path=%s reason=%s", request.url.path, exc.reason)
        payload = {"detail": exc.reason, "request_id": get_request_id()}
        return JSONResponse(status_code=code, content=payload)


def jsonable_errors(payload: dict) -> dict:
    """Pydantic error contexts may hold exception objects; stringify them."""
    errors = []
    for error in payload.get("errors", []):
        item = dict(error)
        if "ctx" in item:
            item["ctx"] = {key: str(value) for key, value in item["ctx"].items()}
        errors.append(item)
    payload["errors"] = errors
    return payload
