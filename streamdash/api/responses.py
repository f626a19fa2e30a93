"""Uniform JSON envelope for API responses"""
from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from streamdash.core.exceptions import (
    InvalidQuery,
    QueryFailure,
    QueryTimeout,
    ResultTooLarge,
    StreamDashError,
)


def success_response(data: Any, **extra: Any) -> dict:
    """{"success": true, "data": ..., **extra}"""
    return {"success": True, "data": jsonable_encoder(data), **jsonable_encoder(extra)}


def error_response(error: str, details: Any = None, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> JSONResponse:
    """{"success": false, "error": ..., "details": ...}"""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "details": jsonable_encoder(details)},
    )


def status_code_for(exc: StreamDashError) -> int:
    if isinstance(exc, InvalidQuery):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ResultTooLarge):
        return status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    if isinstance(exc, QueryTimeout):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(exc, QueryFailure):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def streamdash_error_response(exc: StreamDashError) -> JSONResponse:
    details = f"{exc.message} ({exc.detail})" if exc.detail else exc.message
    return error_response(exc.summary, details, status_code_for(exc))
