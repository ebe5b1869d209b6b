"""Registry of archivable and recoverable entities."""

from typing import Final

from .entities import IdentifierPolicy, LogicalEntity, RecoveryMode
from .exceptions import UnknownEntityError

MASTER_TEACHER_TABLES: Final = (
    "master_teacher",
    "master_teachers",
    "masterteacher",
    "master_teacher_info",
    "master_teacher_tbl",
)
MASTER_TEACHER_RELATED_TABLES: Final = (
    "mt_coordinator",
    "remedial_teacher",
    "remedial_teachers",
    "remedial_teacher_info",
    "remedial_teacher_tbl",
    "master_teacher_assignment",
)
TEACHER_TABLES: Final = ("teacher", "teachers", "teacher_info", "teacher_tbl")
PRINCIPAL_TABLES: Final = ("principal", "principals", "principal_info", "principal_tbl")

ENTITIES: Final[tuple[LogicalEntity, ...]] = (
    LogicalEntity(
        key="student",
        table_candidates=("student", "students"),
        id_column_candidates=("student_id", "id"),
        mode=RecoveryMode.DELETED,
        label_columns=("first_name", "last_name", "lrn"),
    ),
    LogicalEntity(
        key="principal",
        table_candidates=PRINCIPAL_TABLES,
        id_column_candidates=("principal_id",),
        mode=RecoveryMode.DELETED,
        label_columns=("principal_id",),
        account_roles=("principal",),
        lookup_columns=("user_id", "principal_id"),
        identifier=IdentifierPolicy(
            root_column="principal_id",
            entity_columns=("principal_id",),
            template="PR-{year}{seq:04d}",
        ),
    ),
    LogicalEntity(
        key="master_teacher",
        table_candidates=MASTER_TEACHER_TABLES,
        id_column_candidates=("master_teacher_id",),
        mode=RecoveryMode.DELETED,
        label_columns=("master_teacher_id",),
        account_roles=("master_teacher", "masterteacher"),
        related_table_candidates=MASTER_TEACHER_RELATED_TABLES,
        lookup_columns=(
            "user_id",
            "master_teacher_id",
            "masterteacher_id",
            "teacher_id",
            "coord_id",
            "remedial_teacher_id",
            "remedial_id",
        ),
        identifier=IdentifierPolicy(
            root_column="master_teacher_id",
            entity_columns=("master_teacher_id", "masterteacher_id", "teacher_id"),
            template="MT-{year}{seq:04d}",
        ),
    ),
    LogicalEntity(
        key="teacher",
        table_candidates=TEACHER_TABLES,
        id_column_candidates=("teacher_id",),
        mode=RecoveryMode.DELETED,
        label_columns=("teacher_id",),
        account_roles=("teacher",),
        lookup_columns=("user_id", "teacher_id", "employee_id"),
        identifier=IdentifierPolicy(
            root_column="teacher_id",
            entity_columns=("teacher_id", "employee_id"),
            template="TE-{year}{seq:04d}",
        ),
    ),
    LogicalEntity(
        key="parent",
        table_candidates=("parent", "parents"),
        id_column_candidates=("parent_id",),
        mode=RecoveryMode.DELETED,
        label_columns=("parent_id",),
    ),
    LogicalEntity(
        key="activity",
        table_candidates=("activities", "activity"),
        id_column_candidates=("activity_id",),
        mode=RecoveryMode.ARCHIVED,
        label_columns=("title", "subject", "type"),
    ),
    LogicalEntity(
        key="remedial_quarter",
        table_candidates=("remedial_quarter",),
        id_column_candidates=("quarter_id",),
        mode=RecoveryMode.ARCHIVED,
        label_columns=("quarter_name", "school_year"),
    ),
    LogicalEntity(
        key="weekly_subject_schedule",
        table_candidates=("weekly_subject_schedule",),
        id_column_candidates=("schedule_id",),
        mode=RecoveryMode.ARCHIVED,
        label_columns=("day_of_week",),
    ),
    LogicalEntity(
        key="assessment",
        table_candidates=("assessments", "assessment"),
        id_column_candidates=("assessment_id",),
        mode=RecoveryMode.ARCHIVED,
        label_columns=("title", "description"),
    ),
    LogicalEntity(
        key="attendance_record",
        table_candidates=("attendance_record", "attendance_records"),
        id_column_candidates=("attendance_id",),
        mode=RecoveryMode.VOIDED,
        label_columns=("student_id", "remarks"),
    ),
    LogicalEntity(
        key="performance_record",
        table_candidates=("performance_records", "performance_record"),
        id_column_candidates=("record_id",),
        mode=RecoveryMode.VOIDED,
        label_columns=("student_id", "grade"),
    ),
)

_BY_KEY: Final = {entity.key: entity for entity in ENTITIES}


def normalize_entity_key(key: str | None) -> str:
    return (key or "").strip().lower()


def find_entity(key: str | None) -> LogicalEntity | None:
    return _BY_KEY.get(normalize_entity_key(key))


def get_entity(key: str | None) -> LogicalEntity:
    """Look up an entity, raising ``UnknownEntityError`` when unsupported."""
    entity = find_entity(key)
    if entity is None:
        raise UnknownEntityError(normalize_entity_key(key))
    return entity
