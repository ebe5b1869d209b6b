import json
from datetime import datetime
from typing import Final

from sqlalchemy import Connection, insert

from ...application.audit import AuditEntry
from ...constants import (
    AUDIT_ACTION_MAX_LENGTH,
    AUDIT_DETAILS_MAX_LENGTH,
    AUDIT_IP_MAX_LENGTH,
    AUDIT_USER_MAX_LENGTH,
)
from ...logging_config import get_logger
from .models import SecurityAuditLog

logger: Final = get_logger(__name__)

UNKNOWN_ACTOR: Final = "unknown"


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


def serialize_details(details: dict) -> str:
    return json.dumps(details, default=str, sort_keys=True)[:AUDIT_DETAILS_MAX_LENGTH]


class DatabaseAuditSink:
    """Writes audit entries into the security audit log table."""

    def record(self, connection: Connection, entry: AuditEntry) -> None:
        actor = UNKNOWN_ACTOR
        if entry.actor_id not in (None, ""):
            actor = str(entry.actor_id)
        table = SecurityAuditLog.__table__  # type: ignore[attr-defined]
        statement = insert(table).values(
            action=_truncate(entry.action, AUDIT_ACTION_MAX_LENGTH),
            user_id=_truncate(actor, AUDIT_USER_MAX_LENGTH),
            ip_address=_truncate(entry.ip_address, AUDIT_IP_MAX_LENGTH),
            details=serialize_details(entry.details),
            created_at=datetime.now(),
        )
        connection.execute(statement)
        logger.debug("Audit entry stored", action=entry.action, actor=actor)

