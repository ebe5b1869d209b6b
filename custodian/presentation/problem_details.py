"""RFC 7807 Problem Details payloads for API errors."""

from typing import Any

from fastapi import status
from pydantic import BaseModel, Field

PROBLEM_TYPE_BASE = "https://custodian.local/problems"


class ErrorCodes:
    """Machine-readable codes used in field errors."""

    FIELD_REQUIRED = "field_required"
    FIELD_TOO_LONG = "field_too_long"
    FIELD_INVALID_VALUE = "field_invalid_value"
    TOO_MANY_IDS = "too_many_ids"
    UNKNOWN_ENTITY = "unknown_entity"


class ProblemDetail(BaseModel):
    type: str = Field(description="URI reference identifying the problem type")
    title: str = Field(description="Short, human-readable summary")
    status: int = Field(description="HTTP status code")
    detail: str | None = Field(
        default=None, description="Explanation of this occurrence"
    )
    instance: str | None = Field(default=None, description="Request path that failed")


class ValidationProblemDetail(ProblemDetail):
    errors: list[dict[str, str]] = Field(default_factory=list)


class SchemaProblemDetail(ProblemDetail):
    missing: str = Field(description="Dotted name of the missing table or column")


class ArchiveProblemDetail(ProblemDetail):
    failures: list[dict[str, Any]] = Field(default_factory=list)


class ProblemDetailFactory:
    @staticmethod
    def validation_failed(
        detail: str,
        instance: str | None = None,
        field_errors: list[dict[str, str]] | None = None,
    ) -> ValidationProblemDetail:
        return ValidationProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/validation-error",
            title="Validation Failed",
            status=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            instance=instance,
            errors=field_errors or [],
        )

    @staticmethod
    def unauthorized(detail: str, instance: str | None = None) -> ProblemDetail:
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/unauthorized",
            title="Unauthorized",
            status=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            instance=instance,
        )

    @staticmethod
    def http_error(
        status_code: int, detail: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/http-{status_code}",
            title="Request Failed",
            status=status_code,
            detail=detail,
            instance=instance,
        )

    @staticmethod
    def schema_unavailable(
        detail: str, missing: str, instance: str | None = None
    ) -> SchemaProblemDetail:
        return SchemaProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/schema-unavailable",
            title="Schema Unavailable",
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            instance=instance,
            missing=missing,
        )

    @staticmethod
    def archive_failed(
        detail: str,
        failures: list[dict[str, Any]],
        instance: str | None = None,
    ) -> ArchiveProblemDetail:
        return ArchiveProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/archive-failed",
            title="Archive Failed",
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            instance=instance,
            failures=failures,
        )

    @staticmethod
    def internal_server_error(
        detail: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/internal-error",
            title="Internal Server Error",
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            instance=instance,
        )
