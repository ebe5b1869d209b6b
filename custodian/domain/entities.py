"""Pure domain entities without infrastructure dependencies."""

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class RecoveryMode(StrEnum):
    """Soft-delete convention used by an entity's live table."""

    DELETED = "deleted"
    ARCHIVED = "archived"
    VOIDED = "voided"

    @property
    def flag_candidates(self) -> tuple[str, ...]:
        return _MODE_COLUMNS[self]["flag"]

    @property
    def time_candidates(self) -> tuple[str, ...]:
        return _MODE_COLUMNS[self]["time"]

    @property
    def reason_candidates(self) -> tuple[str, ...]:
        return _MODE_COLUMNS[self]["reason"]

    @property
    def actor_candidates(self) -> tuple[str, ...]:
        return _MODE_COLUMNS[self]["actor"]


_MODE_COLUMNS: dict[RecoveryMode, dict[str, tuple[str, ...]]] = {
    RecoveryMode.DELETED: {
        "flag": ("is_deleted",),
        "time": ("deleted_at",),
        "reason": ("delete_reason", "deletion_reason"),
        "actor": ("deleted_by",),
    },
    RecoveryMode.ARCHIVED: {
        "flag": ("is_archived",),
        "time": ("archived_at",),
        "reason": ("archive_reason", "reason"),
        "actor": ("archived_by",),
    },
    RecoveryMode.VOIDED: {
        "flag": ("is_voided",),
        "time": ("voided_at",),
        "reason": ("void_reason",),
        "actor": ("voided_by",),
    },
}


@dataclass(frozen=True)
class ColumnSet:
    """Column names physically present on one table, in ordinal order."""

    table: str
    names: tuple[str, ...] = ()

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __bool__(self) -> bool:
        return bool(self.names)


@dataclass(frozen=True)
class IdentifierPolicy:
    """Where an entity's human-facing identifier is duplicated.

    ``root_column`` lives on the root users table, ``entity_columns`` are tried
    on the entity table in priority order. ``template`` formats the fallback
    identifier from the root id (``seq``) and the two-digit year (``year``).
    """

    root_column: str
    entity_columns: tuple[str, ...]
    template: str = "{seq}"

    def format_fallback(self, root_id: int, now: datetime | None = None) -> str:
        year = (now or datetime.now()).strftime("%y")
        return self.template.format(seq=max(1, int(root_id)), year=year)


@dataclass(frozen=True)
class LogicalEntity:
    """A named kind of archivable/recoverable record.

    Static configuration; never persisted.
    """

    key: str
    table_candidates: tuple[str, ...]
    id_column_candidates: tuple[str, ...]
    mode: RecoveryMode
    label_columns: tuple[str, ...] = ()
    # Non-empty for user accounts archived through the snapshot store
    account_roles: tuple[str, ...] = ()
    # Extra denormalized tables holding rows for the same account
    related_table_candidates: tuple[str, ...] = ()
    # Columns used to find/delete entity-specific rows for a root id
    lookup_columns: tuple[str, ...] = ()
    identifier: IdentifierPolicy | None = None

    @property
    def archive_backed(self) -> bool:
        return bool(self.account_roles)

    @property
    def archive_tables(self) -> tuple[str, ...]:
        """Every candidate table that may hold rows for one account."""
        names = self.table_candidates + self.related_table_candidates
        return tuple(dict.fromkeys(names))


@dataclass(frozen=True)
class RecoveryRecord:
    """Projection of one live row for human review."""

    id: Any
    flagged: bool
    occurred_at: datetime | None = None
    reason: str | None = None
    label: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class PreviewResult:
    entity: str
    requested_ids: list[Any]
    recoverable: list[RecoveryRecord] = field(default_factory=list)
    not_recoverable: list[RecoveryRecord] = field(default_factory=list)
    not_found: list[Any] = field(default_factory=list)

    @property
    def recoverable_ids(self) -> list[Any]:
        return [record.id for record in self.recoverable]


@dataclass
class RestoreResult:
    entity: str
    requested_ids: list[Any]
    restored_ids: list[Any] = field(default_factory=list)

    @property
    def restored_count(self) -> int:
        return len(self.restored_ids)

    @property
    def outcome(self) -> str:
        return "restored" if self.restored_ids else "no-op"


@dataclass(frozen=True)
class ArchivedAccount:
    id: int
    name: str | None
    email: str | None
    archived_id: Any = None
    reused_snapshot: bool = False


@dataclass(frozen=True)
class ArchiveFailure:
    id: int
    message: str


@dataclass
class ArchiveResult:
    entity: str
    archived: list[ArchivedAccount] = field(default_factory=list)
    not_found: list[int] = field(default_factory=list)
    failures: list[ArchiveFailure] = field(default_factory=list)

    @property
    def archived_count(self) -> int:
        return len(self.archived)

    @property
    def archived_ids(self) -> list[int]:
        return [account.id for account in self.archived]


@dataclass
class SoftDeleteResult:
    entity: str
    requested_ids: list[Any]
    flagged_ids: list[Any] = field(default_factory=list)

    @property
    def flagged_count(self) -> int:
        return len(self.flagged_ids)


@dataclass
class ReconcileResult:
    entity: str
    canonical: dict[int, str] = field(default_factory=dict)
    repairs_applied: int = 0
    repairs_failed: int = 0


def normalize_role_token(value: Any) -> str:
    """Normalize a role name: ``"Master Teacher"`` -> ``"master_teacher"``."""
    if value is None:
        return ""
    return re.sub(r"[\s/-]+", "_", str(value).strip().lower())


def coalesce(values: Iterable[Any]) -> Any:
    """Return the first value that is neither None nor a blank string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


@dataclass(frozen=True)
class SummaryItem:
    entity: str
    id: Any
    label: str | None
    occurred_at: datetime | None
    reason: str | None


@dataclass
class RecoverySummary:
    counts: dict[str, int] = field(default_factory=dict)
    recent: list[SummaryItem] = field(default_factory=list)
    # entity key -> dotted name of the missing table/column
    unavailable: dict[str, str] = field(default_factory=dict)
