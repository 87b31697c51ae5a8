"""
Error taxonomy and the terminal error handler.

Every failure raised while a request travels through the pipeline ends up in
``ErrorHandler``, which is the only place a status code and body are derived
from an exception. Responses always have the shape::

    {"success": false, "message": "...", "code": "..."}

with an optional ``details`` object.
"""

import logging
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple

from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Internal Server Error"

_FALLBACK_BODY = {"success": False, "message": GENERIC_MESSAGE, "code": "INTERNAL_ERROR"}


class PortalException(Exception):
    """Base class for errors that know their own HTTP status."""

    status_code = 500
    code = "PORTAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": False, "message": self.message, "code": self.code}
        if self.details:
            result["details"] = self.details
        return result


class ParseError(PortalException):
    """Request body claims to be JSON but cannot be decoded."""

    status_code = 400
    code = "PARSE_ERROR"

    def __init__(self, reason: str):
        super().__init__(
            f"Malformed JSON body: {reason}", details={"reason": reason}
        )


class PayloadTooLargeError(PortalException):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Request body too large: {size} bytes (limit: {limit} bytes)",
            details={"size": size, "limit": limit},
        )


class NotFoundError(PortalException):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, method: str, path: str):
        super().__init__(
            f"Route not found: {method} {path}",
            details={"method": method, "path": path},
        )


class ValidationError(PortalException):
    status_code = 400
    code = "VALIDATION_ERROR"


class CrossOriginError(PortalException):
    """Preflight request the CORS policy refuses."""

    status_code = 400
    code = "CORS_ORIGIN_DENIED"


class InternalError(PortalException):
    status_code = 500
    code = "INTERNAL_ERROR"


def _status_code_name(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return "HTTP_ERROR"


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _join_errors(errors) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return ", ".join(parts)


def _carried_status(exc: Exception) -> Optional[int]:
    for attribute in ("status_code", "status"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool) and 400 <= value <= 599:
            return value
    return None


class ErrorHandler:
    """
    Terminal stage of the request pipeline.

    Usable both as the pipeline's catch-all and as a FastAPI exception
    handler, so that framework-raised errors go through the same mapping.
    It never raises: if rendering fails a fixed 500 body is returned.
    """

    def describe(self, exc: Exception) -> Tuple[int, Dict[str, Any], Optional[Dict[str, str]]]:
        """Map an exception to ``(status_code, body, extra_headers)``."""
        if isinstance(exc, PortalException):
            return exc.status_code, exc.to_dict(), None

        if isinstance(exc, StarletteHTTPException):
            body = {"success": False, "code": _status_code_name(exc.status_code)}
            if isinstance(exc.detail, str):
                body["message"] = exc.detail
            else:
                body["message"] = _status_phrase(exc.status_code)
                body["details"] = jsonable_encoder(exc.detail)
            return exc.status_code, body, getattr(exc, "headers", None)

        if isinstance(exc, RequestValidationError):
            errors = exc.errors()
            return 422, {
                "success": False,
                "message": _join_errors(errors),
                "code": "UNPROCESSABLE_ENTITY",
                "details": {"errors": jsonable_encoder(errors)},
            }, None

        if isinstance(exc, PydanticValidationError):
            return 400, {
                "success": False,
                "message": _join_errors(exc.errors()),
                "code": "VALIDATION_ERROR",
            }, None

        if isinstance(exc, DuplicateKeyError):
            key_value = (exc.details or {}).get("keyValue") or {}
            fields = ", ".join(key_value) or "value"
            return 400, {
                "success": False,
                "message": f"{fields} field has to be unique",
                "code": "DUPLICATE_KEY",
            }, None

        status_code = _carried_status(exc)
        if status_code is not None:
            return status_code, {
                "success": False,
                "message": str(exc) or _status_phrase(status_code),
                "code": _status_code_name(status_code),
            }, None

        return 500, dict(_FALLBACK_BODY), None

    async def __call__(self, request: Request, exc: Exception) -> Response:
        try:
            status_code, body, headers = self.describe(exc)
            self._log(request, exc, status_code)
            if status_code in (204, 304) or status_code < 200:
                return Response(status_code=status_code, headers=headers)
            return JSONResponse(status_code=status_code, content=body, headers=headers)
        except Exception:
            logger.exception("Error handler failed while rendering %r", exc)
            return JSONResponse(status_code=500, content=dict(_FALLBACK_BODY))

    def _log(self, request: Request, exc: Exception, status_code: int) -> None:
        if status_code >= 500:
            logger.error(
                "Unhandled error on %s %s: %s: %s",
                request.method,
                request.url.path,
                type(exc).__name__,
                exc,
                exc_info=exc,
            )
        else:
            logger.info(
                "%s %s failed with %s: %s",
                request.method,
                request.url.path,
                status_code,
                exc,
            )
