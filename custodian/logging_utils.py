"""Structured log helpers shared by the middleware and the services."""

from typing import Any

from fastapi import Request

from .logging_config import get_logger

_USER_AGENT_MAX_LENGTH = 100


def log_user_action(action: str, actor: str | int | None, **kwargs: Any) -> None:
    """Log one administrative outcome (archive, restore, soft delete, reconcile).

    Args:
        action: Audit action name, e.g. ``archive_master_teacher``
        actor: Id of the administrator, ``None`` when unknown
        **kwargs: Batch counters such as ``requested`` or ``restored``
    """
    get_logger("custodian.actions").info(
        "Administrative action", action=action, actor=actor, **kwargs
    )


def log_api_request(
    request: Request, response_status: int, process_time_ms: float | None = None
) -> None:
    """Log a finished HTTP request; 4xx as warning, 5xx as error."""
    logger = get_logger("custodian.api")
    fields: dict[str, Any] = {
        "method": request.method,
        "path": request.url.path,
        "status_code": response_status,
        "client_ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent", "")[:_USER_AGENT_MAX_LENGTH],
    }
    if process_time_ms is not None:
        fields["process_time_ms"] = round(process_time_ms, 2)

    if response_status >= 500:
        logger.error("Request failed", **fields)
    elif response_status >= 400:
        logger.warning("Request rejected", **fields)
    else:
        logger.info("Request completed", **fields)


def log_database_operation(
    operation: str, table: str, success: bool = True, **kwargs: Any
) -> None:
    """Log one statement of a cascade, restore or identifier repair.

    Args:
        operation: ``insert``, ``update`` or ``delete``
        table: Physical table name
        success: False when the statement raised
        **kwargs: ``rowcount``, ``match_column`` and similar details
    """
    logger = get_logger("custodian.database")
    if success:
        logger.debug("Statement executed", operation=operation, table=table, **kwargs)
    else:
        logger.error("Statement failed", operation=operation, table=table, **kwargs)


def log_system_info(hostname: str, ip_address: str, debug_mode: bool) -> None:
    get_logger("custodian.system").info(
        "Application startup",
        hostname=hostname,
        ip_address=ip_address,
        debug_mode=debug_mode,
    )
