"""Recovery summary across every registered entity."""

from collections.abc import Iterable
from datetime import datetime
from typing import Final

from sqlalchemy import Connection, func, select

from ..config import settings
from ..domain.entities import LogicalEntity, RecoverySummary, SummaryItem
from ..domain.exceptions import SchemaUnavailableError
from ..domain.registry import ENTITIES
from ..infrastructure.database.schema import load_schema
from ..logging_config import get_logger
from .account_recovery import (
    AccountTarget,
    account_tables,
    account_target_from_schema,
    classify_snapshots,
)
from .archive_service import chunked
from .recovery_targets import (
    RecoveryTarget,
    flag_set_clause,
    is_flag_set,
    resolve_target,
    to_record,
)
from .transactions import release_read_transaction

logger: Final = get_logger(__name__)

RECENT_PER_ENTITY: Final = 3
RECENT_OVERALL: Final = 20


def _sort_key(item: SummaryItem) -> tuple[bool, datetime]:
    return (item.occurred_at is not None, item.occurred_at or datetime.min)


def _flag_entity_summary(
    connection: Connection, target: RecoveryTarget
) -> tuple[int, list[SummaryItem]]:
    schema = target.schema
    table = schema.table_clause(target.table, target.selected_columns)
    flagged = flag_set_clause(target, table)

    count = connection.execute(
        select(func.count()).select_from(table).where(flagged)
    ).scalar_one()

    order_column = target.time_column or target.id_column
    statement = (
        select(table)
        .where(flagged)
        .order_by(table.c[order_column].desc())
        .limit(RECENT_PER_ENTITY)
    )
    items = []
    for row in connection.execute(statement).mappings():
        if not is_flag_set(target, row.get(target.flag_column)):
            continue
        record = to_record(target, row)
        items.append(
            SummaryItem(
                entity=target.entity.key,
                id=record.id,
                label=record.label,
                occurred_at=record.occurred_at,
                reason=record.reason,
            )
        )
    return int(count), items


def _account_entity_summary(
    connection: Connection, target: AccountTarget
) -> tuple[int, list[SummaryItem]]:
    archive = target.archive
    key_column = archive.key_column
    table = target.schema.table_clause(archive.name, [key_column])
    ids = [row[0] for row in connection.execute(select(table.c[key_column]))]

    count = 0
    items: list[SummaryItem] = []
    # Bounded IN lists; only the newest few survive each chunk
    for chunk in chunked(ids, settings.archive_chunk_size):
        snapshots = classify_snapshots(connection, target, chunk)
        for snapshot in snapshots.values():
            record = snapshot.record
            if not record.flagged:
                continue
            count += 1
            items.append(
                SummaryItem(
                    entity=target.entity.key,
                    id=record.id,
                    label=record.label,
                    occurred_at=record.occurred_at,
                    reason=record.reason,
                )
            )
        items.sort(key=_sort_key, reverse=True)
        del items[RECENT_PER_ENTITY:]
    return count, items


def summarize(
    connection: Connection, entities: Iterable[LogicalEntity] = ENTITIES
) -> RecoverySummary:
    """Counts and most recent recoverable items per entity.

    An entity whose table or flag column is missing is listed as unavailable
    instead of failing the whole summary.
    """
    summary = RecoverySummary()
    entity_list = list(entities)
    tables: list[str] = []
    for entity in entity_list:
        tables.extend(
            account_tables(entity) if entity.archive_backed else entity.table_candidates
        )
    schema = load_schema(
        connection, list(dict.fromkeys(tables)), settings.administrative_tables
    )

    for entity in entity_list:
        try:
            if entity.archive_backed:
                target = account_target_from_schema(schema, entity)
                count, items = _account_entity_summary(connection, target)
            else:
                count, items = _flag_entity_summary(
                    connection, resolve_target(schema, entity)
                )
        except SchemaUnavailableError as e:
            summary.unavailable[entity.key] = e.missing
            continue
        summary.counts[entity.key] = count
        summary.recent.extend(items)

    release_read_transaction(connection)
    summary.recent.sort(key=_sort_key, reverse=True)
    summary.recent = summary.recent[:RECENT_OVERALL]
    logger.debug(
        "Recovery summary built",
        entities=len(summary.counts),
        unavailable=len(summary.unavailable),
    )
    return summary
