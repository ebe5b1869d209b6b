"""Audit sink contract used by every mutating operation."""

from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import Connection


@dataclass(frozen=True)
class AuditEntry:
    action: str
    actor_id: str | int | None
    ip_address: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    """Receives one entry per archive, restore or soft-delete outcome.

    ``connection`` is the connection whose transaction is being committed;
    a sink writing to the same database joins that transaction so the entry
    and the change it describes commit together.
    """

    def record(self, connection: Connection, entry: AuditEntry) -> None: ...
