from datetime import datetime
from typing import Any, Final

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import Connection

from ..application.archive_service import archive
from ..application.audit import AuditSink
from ..application.reconciler import reconcile
from ..application.recovery_service import preview, restore
from ..application.soft_delete_service import soft_delete
from ..application.summary_service import summarize
from ..constants import ACTOR_HEADER
from ..domain.entities import RecoveryRecord
from ..domain.registry import get_entity
from ..infrastructure.database.audit_log import DatabaseAuditSink
from ..infrastructure.database.database import get_connection
from ..request_utils import get_client_ip

api_router: Final = APIRouter(
    prefix="/api/v1",
    tags=["archive", "recovery"],
    responses={
        400: {"description": "Bad Request - Invalid ids, reason or entity"},
        401: {"description": "Unauthorized - Missing or invalid actor header"},
        500: {"description": "Internal Server Error - Archive transaction failed"},
        503: {"description": "Service Unavailable - Required table or column missing"},
    },
)

RecordId = int | str


def get_actor_id(
    x_actor_id: str | None = Header(
        None, alias=ACTOR_HEADER, description="Id of the authorized administrator"
    ),
) -> int:
    """Actor identity supplied by the upstream authorization gate."""
    value = (x_actor_id or "").strip()
    if not value.isdigit() or int(value) <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"A valid {ACTOR_HEADER} header is required",
        )
    return int(value)


def get_audit_sink() -> AuditSink:
    return DatabaseAuditSink()


# Request Models
class ArchiveRequest(BaseModel):
    """Request model for archiving root accounts."""

    root_ids: list[RecordId] = Field(
        ...,
        description="Root user ids to archive",
        examples=[[42, 43]],
    )
    reason: str | None = Field(
        None,
        description="Why the accounts are archived; a default is used when omitted",
        examples=["Resigned"],
    )


class PreviewRequest(BaseModel):
    """Request model for a recovery preview."""

    entity: str = Field(..., description="Entity key", examples=["student"])
    ids: list[RecordId] = Field(..., description="Record ids to classify")


class RestoreRequest(BaseModel):
    """Request model for an emergency restore."""

    entity: str = Field(..., description="Entity key", examples=["student"])
    ids: list[RecordId] = Field(..., description="Record ids to restore")
    reason: str | None = Field(None, description="Why the records are restored")
    approval_note: str | None = Field(
        None, description="Who approved the restore and how"
    )


class SoftDeleteRequest(BaseModel):
    """Request model for soft deleting flag-mode records."""

    entity: str = Field(..., description="Entity key", examples=["activity"])
    ids: list[RecordId] = Field(..., description="Record ids to flag")
    reason: str | None = Field(None, description="Why the records are removed")


class ReconcileRequest(BaseModel):
    """Request model for identifier reconciliation."""

    root_ids: list[RecordId] = Field(..., description="Root user ids to reconcile")


# Response Models
class RecordResponse(BaseModel):
    """One classified record."""

    id: RecordId = Field(description="Record id (archive id for accounts)")
    flagged: bool = Field(description="Whether the record is currently removed")
    occurred_at: datetime | None = Field(description="When it was removed")
    reason: str | None = Field(description="Recorded removal reason")
    label: str | None = Field(description="Human-readable label")
    fields: dict[str, Any] = Field(description="Label and key column values")


class PreviewResponse(BaseModel):
    entity: str
    requested_ids: list[RecordId]
    recoverable: list[RecordResponse]
    not_recoverable: list[RecordResponse]
    not_found: list[RecordId]


class RestoreResponse(BaseModel):
    entity: str
    restored_count: int
    restored_ids: list[RecordId]
    outcome: str = Field(description="'restored' or 'no-op'")
    reason: str | None
    approval_note: str | None


class ArchivedAccountResponse(BaseModel):
    id: int = Field(description="Root user id")
    name: str | None = Field(description="Display name captured at archive time")
    email: str | None = Field(description="Email captured at archive time")


class ArchiveFailureResponse(BaseModel):
    id: int
    message: str


class ArchiveResponse(BaseModel):
    """Response model for an archive batch."""

    entity: str
    archived_count: int
    archived: list[ArchivedAccountResponse]
    not_found: list[int] = Field(description="Ids with no matching account")
    failures: list[ArchiveFailureResponse] = Field(
        description="Ids rolled back because of a database error"
    )


class SoftDeleteResponse(BaseModel):
    entity: str
    flagged_count: int
    flagged_ids: list[RecordId]


class SummaryItemResponse(BaseModel):
    entity: str
    id: RecordId
    label: str | None
    occurred_at: datetime | None
    reason: str | None


class SummaryResponse(BaseModel):
    """Recoverable counts per entity and the most recent removals."""

    counts: dict[str, int]
    recent: list[SummaryItemResponse]
    unavailable: dict[str, str] = Field(
        description="Entities whose schema is missing, with the missing name"
    )


class ReconcileResponse(BaseModel):
    entity: str
    canonical: dict[int, str] = Field(description="Canonical identifier per root id")
    repairs_applied: int
    repairs_failed: int


def _record_response(record: RecoveryRecord) -> RecordResponse:
    return RecordResponse(
        id=record.id,
        flagged=record.flagged,
        occurred_at=record.occurred_at,
        reason=record.reason,
        label=record.label,
        fields=record.fields,
    )


@api_router.post(
    "/archive/{entity}",
    response_model=ArchiveResponse,
    tags=["archive"],
    summary="Archive accounts",
    description="""
    Snapshot and remove root accounts of an account entity together with the
    rows that depend on them.

    Each id is archived in its own transaction. Ids without an account are
    reported in `not_found`; ids whose cascade fails are rolled back and
    reported in `failures`. Re-archiving an already archived id reuses its
    snapshot.
    """,
)
def api_archive(
    *,
    request: Request,
    connection: Connection = Depends(get_connection),
    actor_id: int = Depends(get_actor_id),
    audit_sink: AuditSink = Depends(get_audit_sink),
    entity: str = Path(description="Account entity key", examples=["teacher"]),
    body: ArchiveRequest,
) -> ArchiveResponse:
    """Archive a batch of accounts."""
    result = archive(
        connection,
        get_entity(entity),
        body.root_ids,
        body.reason,
        actor_id,
        ip_address=get_client_ip(request),
        audit_sink=audit_sink,
    )
    return ArchiveResponse(
        entity=result.entity,
        archived_count=result.archived_count,
        archived=[
            ArchivedAccountResponse(
                id=account.id, name=account.name, email=account.email
            )
            for account in result.archived
        ],
        not_found=result.not_found,
        failures=[
            ArchiveFailureResponse(id=failure.id, message=failure.message)
            for failure in result.failures
        ],
    )


@api_router.post(
    "/recovery/preview",
    response_model=PreviewResponse,
    tags=["recovery"],
    summary="Preview recoverable records",
    description="""
    Classify the requested ids as recoverable, not recoverable or not found.
    Nothing is written.
    """,
)
def api_preview(
    *,
    connection: Connection = Depends(get_connection),
    _actor_id: int = Depends(get_actor_id),
    body: PreviewRequest,
) -> PreviewResponse:
    """Classify records without changing them."""
    result = preview(connection, get_entity(body.entity), body.ids)
    return PreviewResponse(
        entity=result.entity,
        requested_ids=result.requested_ids,
        recoverable=[_record_response(record) for record in result.recoverable],
        not_recoverable=[_record_response(record) for record in result.not_recoverable],
        not_found=result.not_found,
    )


@api_router.post(
    "/recovery/restore",
    response_model=RestoreResponse,
    tags=["recovery"],
    summary="Emergency restore",
    description="""
    Restore the ids that are recoverable at the time of this call. A previous
    preview is never trusted. Zero recoverable ids is a successful no-op.
    """,
)
def api_restore(
    *,
    request: Request,
    connection: Connection = Depends(get_connection),
    actor_id: int = Depends(get_actor_id),
    audit_sink: AuditSink = Depends(get_audit_sink),
    body: RestoreRequest,
) -> RestoreResponse:
    """Restore removed records."""
    result = restore(
        connection,
        get_entity(body.entity),
        body.ids,
        body.reason,
        body.approval_note,
        actor_id,
        ip_address=get_client_ip(request),
        audit_sink=audit_sink,
    )
    return RestoreResponse(
        entity=result.entity,
        restored_count=result.restored_count,
        restored_ids=result.restored_ids,
        outcome=result.outcome,
        reason=body.reason.strip() if body.reason else None,
        approval_note=body.approval_note.strip() if body.approval_note else None,
    )


@api_router.post(
    "/recovery/soft-delete",
    response_model=SoftDeleteResponse,
    tags=["recovery"],
    summary="Soft delete records",
    description="Flag active records of a flag-mode entity as removed.",
)
def api_soft_delete(
    *,
    request: Request,
    connection: Connection = Depends(get_connection),
    actor_id: int = Depends(get_actor_id),
    audit_sink: AuditSink = Depends(get_audit_sink),
    body: SoftDeleteRequest,
) -> SoftDeleteResponse:
    """Flag records as removed."""
    result = soft_delete(
        connection,
        get_entity(body.entity),
        body.ids,
        body.reason,
        actor_id,
        ip_address=get_client_ip(request),
        audit_sink=audit_sink,
    )
    return SoftDeleteResponse(
        entity=result.entity,
        flagged_count=result.flagged_count,
        flagged_ids=result.flagged_ids,
    )


@api_router.get(
    "/recovery/summary",
    response_model=SummaryResponse,
    tags=["recovery"],
    summary="Recovery summary",
    description="""
    Recoverable counts per entity and the most recent removals across all
    entities. Entities whose tables are missing are listed in `unavailable`.
    """,
)
def api_summary(
    *,
    connection: Connection = Depends(get_connection),
    _actor_id: int = Depends(get_actor_id),
) -> SummaryResponse:
    summary = summarize(connection)
    return SummaryResponse(
        counts=summary.counts,
        recent=[
            SummaryItemResponse(
                entity=item.entity,
                id=item.id,
                label=item.label,
                occurred_at=item.occurred_at,
                reason=item.reason,
            )
            for item in summary.recent
        ],
        unavailable=summary.unavailable,
    )


@api_router.post(
    "/identifiers/{entity}/reconcile",
    response_model=ReconcileResponse,
    tags=["archive"],
    summary="Reconcile entity identifiers",
    description="""
    Make the identifier stored on the root account and on the entity row agree,
    generating one from the configured format when neither has it.
    """,
)
def api_reconcile(
    *,
    connection: Connection = Depends(get_connection),
    actor_id: int = Depends(get_actor_id),
    entity: str = Path(description="Account entity key", examples=["master_teacher"]),
    body: ReconcileRequest,
) -> ReconcileResponse:
    result = reconcile(connection, get_entity(entity), body.root_ids, actor_id)
    return ReconcileResponse(
        entity=result.entity,
        canonical=result.canonical,
        repairs_applied=result.repairs_applied,
        repairs_failed=result.repairs_failed,
    )
