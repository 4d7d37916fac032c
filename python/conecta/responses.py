"""Response envelopes and the exception handlers that produce them.

Envelopes:
- Success: {"data": ...}
- Page of a list: {"data": [...], "page": {"next_cursor": ...}}
- Error: {"error": {"code": "E_...", "message": "...", "request_id": "..."}}

Domain errors (ApiError) are expected outcomes and are not logged here.
Anything else is logged with its traceback and reported as E_INTERNAL.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from conecta.errors import ApiError, ApiErrorCode
from conecta.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised HTTP errors (unknown route, wrong method, ...)
HTTP_STATUS_TO_CODE: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def paged_response(items: list[Any], page: Any) -> dict[str, Any]:
    """Serialize a page of pydantic models together with its PageInfo."""
    return {
        "data": [item.model_dump(mode="json") for item in items],
        "page": page.model_dump(mode="json"),
    }


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build the error envelope. request_id defaults to the current request's."""
    error: dict[str, Any] = {"code": code.value, "message": message}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error_json(status_code: int, code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _error_json(exc.status_code, exc.code, exc.message)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = HTTP_STATUS_TO_CODE.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _error_json(exc.status_code, code, str(exc.detail) if exc.detail else "Request failed")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 E_INTERNAL; details stay in the server log."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return _error_json(500, ApiErrorCode.E_INTERNAL, "Internal server error")
