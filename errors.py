"""
Error translation for the API.

Every failure raised by a route, dependency or persistence call ends up in one
of the handlers registered by `register_error_handlers`. Known low-level errors
(malformed ids, duplicate keys, schema validation, bad tokens) are translated
into an `AppError` carrying a stable message and an HTTP status; anything else
is treated as a programming error and hidden behind a generic message in
production.
"""

import logging
import re
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, app_settings

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went wrong!"


class AppError(Exception):
    """An expected, operational failure that is safe to show to the client."""

    def __init__(self, message: str, status_code: int = 500, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = "fail" if str(status_code).startswith("4") else "error"
        self.is_operational = True
        self.errors = errors or []


class CastError(Exception):
    """A value could not be cast to the type a stored field requires."""

    def __init__(self, path: str, value: Any, kind: str = "ObjectId"):
        super().__init__(f"Cast to {kind} failed for value {value!r} at path {path!r}")
        self.kind = kind
        self.path = path
        self.value = value


def _field_errors(errors) -> List[Dict[str, Any]]:
    result = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        msg = str(err.get("msg", ""))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        result.append({"field": ".".join(loc), "message": msg})
    return result


def _duplicate_value(exc: DuplicateKeyError) -> Optional[str]:
    details = exc.details or {}
    key_value = details.get("keyValue")
    if key_value:
        return ", ".join(str(v) for v in key_value.values())
    match = re.search(r"dup key: \{[^:]*: (.+?) \}", str(exc))
    if match:
        return match.group(1)
    return None


def translate_error(exc: Exception) -> AppError:
    """Classify an exception into an `AppError`.

    Unknown exceptions become a non-operational 500 so their details are only
    exposed outside production.
    """
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, CastError):
        return AppError(f"Invalid {exc.path}: {exc.value}.", 400)
    if isinstance(exc, DuplicateKeyError):
        value = _duplicate_value(exc)
        if value is None:
            return AppError("Duplicate field value. Please use another value!", 400)
        return AppError(f"Duplicate field value: {value}. Please use another value!", 400)
    if isinstance(exc, (ValidationError, RequestValidationError)):
        errors = _field_errors(exc.errors())
        messages = [f"{e['field']}: {e['message']}" if e["field"] else e["message"] for e in errors]
        return AppError(f"Invalid input data. {'. '.join(messages)}", 400, errors=errors)
    if isinstance(exc, ExpiredSignatureError):
        return AppError("Your token has expired! Please log in again.", 401)
    if isinstance(exc, JWTError):
        return AppError("Invalid token. Please log in again!", 401)

    error = AppError(str(exc) or exc.__class__.__name__, 500)
    error.is_operational = False
    return error


def error_body(error: AppError, exc: Exception, settings: Settings) -> Dict[str, Any]:
    if settings.is_production:
        if not error.is_operational:
            return {"status": "error", "message": GENERIC_MESSAGE}
        body: Dict[str, Any] = {"status": error.status, "message": error.message}
        if error.errors:
            body["errors"] = error.errors
        return body

    body = {
        "status": error.status,
        "message": error.message,
        "error": {"name": exc.__class__.__name__, "statusCode": error.status_code},
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }
    if error.errors:
        body["errors"] = error.errors
    return body


async def handle_error(request: Request, exc: Exception) -> JSONResponse:
    error = translate_error(exc)
    if not error.is_operational:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=error.status_code, content=error_body(error, exc, app_settings(request)))


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        error = AppError(f"Can't find {request.url.path} on this server!", 404)
    else:
        error = AppError(str(exc.detail), exc.status_code)
    response = JSONResponse(status_code=error.status_code, content=error_body(error, exc, app_settings(request)))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    for exc_type in (AppError, CastError, DuplicateKeyError, ValidationError, RequestValidationError, JWTError):
        app.add_exception_handler(exc_type, handle_error)
    app.add_exception_handler(Exception, handle_error)
