from typing import Final

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_METRICS_PORT, DEFAULT_PORT


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env files."""

    # Server configuration
    debug: bool = Field(default=True, description="Enable debug mode")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Server port")

    # Database configuration
    database_url: str = Field(
        default="sqlite:///./custodian.db", description="Database connection URL"
    )

    # Application configuration
    app_name: str = Field(default="Custodian", description="Application name")
    version: str = Field(default="0.1.0", description="Application version")

    # Batch bounds, enforced before any database work
    preview_max_ids: int = Field(
        default=200, ge=1, le=1000, description="Maximum ids per preview request"
    )
    restore_max_ids: int = Field(
        default=200, ge=1, le=1000, description="Maximum ids per restore request"
    )
    archive_max_ids: int = Field(
        default=2000, ge=1, le=20000, description="Maximum ids per archive request"
    )
    archive_chunk_size: int = Field(
        default=500, ge=1, le=1000, description="Ids processed per archive chunk"
    )
    max_note_length: int = Field(
        default=500, ge=1, description="Maximum length of reason/approval notes"
    )

    # Schema conventions
    root_table: str = Field(default="users", description="Root account table")
    root_id_column: str = Field(
        default="user_id", description="Primary identifier of the root table"
    )
    archive_table_candidates: list[str] = Field(
        default=["archived_users", "archive_users"],
        description="Archive snapshot tables, in priority order",
    )
    activity_log_table: str = Field(
        default="account_logs", description="Per-account activity log table"
    )
    audit_table: str = Field(
        default="security_audit_logs", description="Security audit log table"
    )
    default_archive_reason: str = Field(
        default="Archived by IT Administrator",
        description="Reason stored when an archive request carries none",
    )

    # Logging configuration
    log_to_file: bool = Field(
        default=False, description="Force logging to file even in debug mode"
    )
    log_dir: str = Field(default="logs", description="Directory of the log file")

    # Telemetry configuration
    enable_telemetry: bool = Field(
        default=False, description="Export traces and Prometheus metrics"
    )
    metrics_port: int = Field(
        default=DEFAULT_METRICS_PORT,
        ge=1,
        le=65535,
        description="Port of the Prometheus scrape endpoint",
    )

    # Pydantic Settings configuration
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @field_validator("archive_table_candidates")
    @classmethod
    def validate_archive_tables(cls, v: list[str]) -> list[str]:
        """Drop blanks and duplicates while keeping priority order."""
        cleaned = list(dict.fromkeys(name.strip() for name in v if name.strip()))
        if not cleaned:
            raise ValueError("At least one archive table candidate is required")
        return cleaned

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    @computed_field  # type: ignore[prop-decorator]
    @property
    def administrative_tables(self) -> frozenset[str]:
        """Tables handled by dedicated steps, never by generic cascading."""
        names = [
            *self.archive_table_candidates,
            self.activity_log_table,
            self.audit_table,
        ]
        return frozenset(name.lower() for name in names)


# Global settings instance
settings: Final = Settings()
