"""Request validation shared by the archive and recovery services.

Everything here runs before a connection is touched, so an oversized or
malformed request never reaches the database.
"""

from collections.abc import Iterable
from typing import Any

from ..domain.exceptions import ValidationError
from ..logging_config import get_logger

logger = get_logger(__name__)


def _canonical_int(text: str) -> int | str:
    if text.lstrip("-").isdigit() and str(int(text)) == text:
        return int(text)
    return text


def sanitize_ids(values: Iterable[Any] | None, max_ids: int) -> list[int | str]:
    """Trim, drop blanks and deduplicate ids while keeping request order.

    Canonical integer strings become ints so that ``"7"`` and ``7`` address the
    same row. Anything else, such as ``"0042"``, stays the string the caller sent.

    Raises:
        ValidationError: If no id remains or more than ``max_ids`` remain
    """
    cleaned: list[int | str] = []
    seen: set[int | str] = set()
    for value in values or ():
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, int):
            candidate: int | str = value
        else:
            text = str(value).strip()
            if not text:
                continue
            candidate = _canonical_int(text)
        if candidate in seen:
            continue
        seen.add(candidate)
        cleaned.append(candidate)

    if not cleaned:
        logger.warning("Rejected request without ids")
        raise ValidationError("At least one id is required")
    if len(cleaned) > max_ids:
        logger.warning("Rejected oversized id batch", count=len(cleaned), limit=max_ids)
        raise ValidationError(f"At most {max_ids} ids may be submitted at once")
    return cleaned


def sanitize_root_ids(values: Iterable[Any] | None, max_ids: int) -> list[int]:
    """Like :func:`sanitize_ids` but every id must be a positive integer."""
    root_ids: list[int] = []
    for value in sanitize_ids(values, max_ids):
        # Root ids are numeric, so a zero-padded "0042" still means 42
        if isinstance(value, str) and value.isdigit():
            value = int(value)
        if not isinstance(value, int) or value <= 0:
            raise ValidationError(f"Invalid root id: {value!r}")
        root_ids.append(value)
    return list(dict.fromkeys(root_ids))


def sanitize_optional_text(
    value: str | None, field: str, max_length: int
) -> str | None:
    """Strip a free-text note and enforce its length; blank becomes None.

    Raises:
        ValidationError: If the note is too long
    """
    text = (value or "").strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def sanitize_text(value: str | None, field: str, max_length: int) -> str:
    """Like :func:`sanitize_optional_text` but the note is mandatory."""
    text = sanitize_optional_text(value, field, max_length)
    if text is None:
        raise ValidationError(f"{field} is required")
    return text
