"""Exception handlers rendering ``{"error": {"code", "message", "details"}}``."""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from finsight.api.middleware import get_request_id
from finsight.config.constants import ErrorCode
from finsight.errors import AppError

logger = logging.getLogger(__name__)

_STATUS_TO_CODE = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.INVALID_TOKEN,
    403: ErrorCode.ACCESS_DENIED,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.INVALID_PROMPT_STATE,
    422: ErrorCode.VALIDATION_ERROR,
    502: ErrorCode.LLM_API_ERROR,
}


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"code": code, "message": message, "details": details or {}}
    request_id = get_request_id()
    if request_id:
        body["requestId"] = request_id
    return {"error": body}


def _log(request: Request, status_code: int, code: str, error: BaseException) -> None:
    extra = {"path": request.url.path, "status_code": status_code, "error_code": code}
    if status_code >= 500:
        logger.error("Server error: %s - %s", code, error, exc_info=error, extra=extra)
    else:
        logger.warning("Client error: %s - %s", code, error, extra=extra)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    _log(request, exc.status_code, exc.code, exc)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message, exc.details))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _STATUS_TO_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR).value
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    _log(request, exc.status_code, code, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    message = errors[0]["message"] if errors else "Request validation failed"
    code = ErrorCode.VALIDATION_ERROR.value
    _log(request, 400, code, exc)
    return JSONResponse(status_code=400, content=error_body(code, message, {"errors": errors}))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    code = ErrorCode.INTERNAL_ERROR.value
    _log(request, 500, code, exc)
    settings = getattr(request.app.state, "settings", None)
    message = str(exc) if settings is not None and settings.debug else "Internal server error"
    return JSONResponse(status_code=500, content=error_body(code, message))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
