"""Error taxonomy shared by the workflow engine, the submission store and the routers.

Every error carries the HTTP status it maps to. ``register_exception_handlers``
installs handlers that render each of them, plain ``HTTPException`` and request
validation failures as ``{"error": "<message>"}``.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class FormsAPIError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FormsAPIError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(FormsAPIError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(FormsAPIError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(FormsAPIError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(FormsAPIError):
    status_code = status.HTTP_409_CONFLICT


class InfrastructureError(FormsAPIError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def error_response(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def forms_api_error_handler(request: Request, exc: FormsAPIError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return error_response(exc.status_code, exc.message, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", []) if p != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return error_response(422, "; ".join(problems) or "Invalid request")


async def unhandled_exception_handler(request: Request, exc: Exception):
    # database driver errors and the like; the request still gets a structured body
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "The service is temporarily unavailable.")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FormsAPIError, forms_api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
