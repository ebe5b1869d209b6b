"""Tables owned by this service.

The portal schema itself is never modelled here; it is introspected per
operation. Only the security audit log has a fixed shape.
"""

from datetime import datetime

from sqlmodel import Field, SQLModel

from ...config import settings
from ...constants import (
    AUDIT_ACTION_MAX_LENGTH,
    AUDIT_IP_MAX_LENGTH,
    AUDIT_USER_MAX_LENGTH,
)


class SecurityAuditLog(SQLModel, table=True):  # type: ignore[call-arg]
    """One audited archive/restore/soft-delete outcome."""

    __tablename__: str = settings.audit_table  # type: ignore[assignment]

    log_id: int | None = Field(default=None, primary_key=True)
    action: str = Field(index=True, max_length=AUDIT_ACTION_MAX_LENGTH)
    user_id: str = Field(index=True, max_length=AUDIT_USER_MAX_LENGTH)
    ip_address: str | None = Field(default=None, max_length=AUDIT_IP_MAX_LENGTH)
    details: str | None = None  # JSON document
    created_at: datetime = Field(default_factory=datetime.now, index=True)
