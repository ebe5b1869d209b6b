"""Centralized error handling for the presentation layer."""

from dataclasses import asdict
from typing import Any, Final

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..domain.exceptions import (
    ArchiveTransactionError,
    DomainError,
    SchemaUnavailableError,
    UnknownEntityError,
    ValidationError,
)
from ..logging_config import get_logger
from .problem_details import ErrorCodes, ProblemDetail, ProblemDetailFactory

logger: Final = get_logger(__name__)


def problem_response(problem: ProblemDetail) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


def handle_domain_error(error: DomainError, request: Request) -> JSONResponse:
    """Convert domain errors to RFC 7807 responses."""
    instance = str(request.url.path)
    problem: ProblemDetail

    if isinstance(error, ValidationError):
        problem = ProblemDetailFactory.validation_failed(
            detail=str(error),
            instance=instance,
            field_errors=_extract_field_errors(error),
        )
    elif isinstance(error, SchemaUnavailableError):
        problem = ProblemDetailFactory.schema_unavailable(
            detail=str(error), missing=error.missing, instance=instance
        )
    elif isinstance(error, ArchiveTransactionError):
        problem = ProblemDetailFactory.archive_failed(
            detail=str(error),
            failures=[asdict(failure) for failure in error.failures],
            instance=instance,
        )
    else:
        problem = ProblemDetailFactory.internal_server_error(
            detail="An unexpected error occurred. Please try again.",
            instance=instance,
        )
    return problem_response(problem)


def _extract_field_errors(error: ValidationError) -> list[dict[str, str]]:
    """Extract field-specific errors from a ValidationError."""
    if isinstance(error, UnknownEntityError):
        return [
            {
                "field": "entity",
                "code": ErrorCodes.UNKNOWN_ENTITY,
                "message": str(error),
            }
        ]

    errors = []
    error_msg = str(error).lower()
    field = "ids"
    for candidate in ("approval_note", "reason"):
        if error_msg.startswith(candidate):
            field = candidate
            break

    if "required" in error_msg:
        errors.append(
            {"field": field, "code": ErrorCodes.FIELD_REQUIRED, "message": str(error)}
        )
    elif "at most" in error_msg and field == "ids":
        errors.append(
            {"field": field, "code": ErrorCodes.TOO_MANY_IDS, "message": str(error)}
        )
    elif "at most" in error_msg:
        errors.append(
            {"field": field, "code": ErrorCodes.FIELD_TOO_LONG, "message": str(error)}
        )
    elif "invalid" in error_msg:
        errors.append(
            {
                "field": field,
                "code": ErrorCodes.FIELD_INVALID_VALUE,
                "message": str(error),
            }
        )
    return errors


def _log_failure(level: str, message: str, request: Request, **fields: Any) -> None:
    log = getattr(logger, level)
    log(message, path=request.url.path, method=request.method, **fields)


async def _domain_error(request: Request, exc: DomainError) -> JSONResponse:
    _log_failure(
        "warning",
        "Domain error",
        request,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )
    return handle_domain_error(exc, request)


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    _log_failure("warning", "HTTP error", request, status_code=exc.status_code)
    instance = str(request.url.path)
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        problem = ProblemDetailFactory.unauthorized(str(exc.detail), instance)
    else:
        problem = ProblemDetailFactory.http_error(
            exc.status_code, str(exc.detail), instance
        )
    return problem_response(problem)


async def _request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    _log_failure("warning", "Malformed request", request, errors=exc.errors())
    field_errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body")
            or "unknown",
            "code": error["type"],
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    problem = ProblemDetailFactory.validation_failed(
        detail="Request validation failed",
        instance=str(request.url.path),
        field_errors=field_errors,
    )
    return problem_response(problem)


async def _database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    _log_failure(
        "error",
        "Database error",
        request,
        error_type=type(exc).__name__,
        exc_info=True,
    )
    problem = ProblemDetailFactory.internal_server_error(
        detail="A database error occurred. Please try again.",
        instance=str(request.url.path),
    )
    return problem_response(problem)


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    _log_failure(
        "error",
        "Unexpected error",
        request,
        error_type=type(exc).__name__,
        exc_info=True,
    )
    problem = ProblemDetailFactory.internal_server_error(
        detail="An unexpected error occurred. Please try again.",
        instance=str(request.url.path),
    )
    return problem_response(problem)


def register_error_handlers(app: FastAPI) -> None:
    """Render every error the service raises as problem details."""
    app.add_exception_handler(DomainError, _domain_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(SQLAlchemyError, _database_error)
    app.add_exception_handler(Exception, _unexpected_error)
