"""Domain exceptions raised by the service layer and their HTTP rendering.

Services never import FastAPI. They raise one of the exceptions below and the
handlers registered in ``main.create_app`` turn them into the standard
``{"success": false, "message": ...}`` envelope.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


logger = logging.getLogger(__name__)


class FinanceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FinanceError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(FinanceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDeniedError(FinanceError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(FinanceError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(FinanceError):
    status_code = status.HTTP_409_CONFLICT


class ReportTimeoutError(FinanceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def _envelope(status_code: int, message: str, errors=None, headers=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return _envelope(exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _envelope(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc)
        errors.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    return _envelope(status.HTTP_400_BAD_REQUEST, "Validation error", errors=errors)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FinanceError, finance_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
