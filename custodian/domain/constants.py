"""Domain business rules and constants."""

from typing import Final

# Stored value of a flag column for a soft-deleted/archived/voided row
FLAG_SET: Final = 1
FLAG_CLEARED: Final = 0

# Display columns tried when none of an entity's default label columns exist
LABEL_FALLBACK_COLUMNS: Final = (
    "name",
    "title",
    "description",
    "username",
    "email",
    "subject",
)

# Label columns for archive-backed account snapshots
ARCHIVE_LABEL_COLUMNS: Final = (
    "user_code",
    "first_name",
    "last_name",
    "email",
    "username",
    "name",
)

NAME_PART_COLUMNS: Final = ("first_name", "middle_name", "last_name")
CONTACT_COLUMNS: Final = ("contact_number", "phone_number", "mobile", "contact")

# Archive store column candidates
ARCHIVE_ID_COLUMNS: Final = ("archived_id", "archive_id")
ARCHIVE_TIME_COLUMNS: Final = ("archived_at", "timestamp", "created_at")
ARCHIVE_ACTOR_COLUMNS: Final = ("archived_by",)
ARCHIVE_IDENTIFIER_COLUMNS: Final = ("entity_identifier", "user_code")
ARCHIVE_SNAPSHOT_COLUMNS: Final = ("snapshot", "snapshot_json", "row_snapshot")

MAX_LABEL_LENGTH: Final = 200
