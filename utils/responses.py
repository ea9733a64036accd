# utils/responses.py
from typing import Any

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from services.errors import ConflictError, ExternalServiceError, NotFoundError


def ok(data: Any = None, **extra: Any) -> dict:
    body = {"success": True, "data": data}
    body.update(extra)
    return body


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    body = {"success": False, "error": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def http_error(exc: Exception) -> HTTPException:
    """Map a service error onto the HTTP status the envelope should carry."""
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ConflictError):
        status_code = 409
    elif isinstance(exc, ExternalServiceError):
        status_code = 502
    else:
        status_code = 404 if "not found" in str(exc).lower() else 400
    return HTTPException(status_code=status_code, detail=str(exc))
