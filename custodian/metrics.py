"""Archive and recovery metrics."""

from opentelemetry import metrics

meter = metrics.get_meter(__name__)

records_archived_total = meter.create_counter(
    name="custodian_records_archived_total",
    description="Root records archived and removed",
)

archive_failures_total = meter.create_counter(
    name="custodian_archive_failures_total",
    description="Root records whose cascade was rolled back",
)

records_restored_total = meter.create_counter(
    name="custodian_records_restored_total",
    description="Records restored by the recovery engine",
)

restore_noops_total = meter.create_counter(
    name="custodian_restore_noops_total",
    description="Restore calls where nothing was recoverable",
)

records_soft_deleted_total = meter.create_counter(
    name="custodian_records_soft_deleted_total",
    description="Records flagged as deleted, archived or voided",
)

identifier_repairs_total = meter.create_counter(
    name="custodian_identifier_repairs_total",
    description="Identifier write-backs applied by the reconciler",
)

identifier_repair_failures_total = meter.create_counter(
    name="custodian_identifier_repair_failures_total",
    description="Identifier write-backs that failed and were skipped",
)
