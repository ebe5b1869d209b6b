from datetime import datetime

import pytest

from custodian.application.validation import (
    sanitize_ids,
    sanitize_optional_text,
    sanitize_root_ids,
    sanitize_text,
)
from custodian.domain.accounts import compute_display_name, split_display_name
from custodian.domain.entities import IdentifierPolicy, normalize_role_token
from custodian.domain.exceptions import UnknownEntityError, ValidationError
from custodian.domain.registry import get_entity


def test_ids_are_trimmed_and_deduplicated_in_order():
    assert sanitize_ids([" 7", 7, "", None, "abc", 3, "3"], max_ids=10) == [
        7,
        "abc",
        3,
    ]


def test_zero_padded_ids_stay_strings():
    assert sanitize_ids(["0042", " 7 ", "-5", "-05"], max_ids=10) == [
        "0042",
        7,
        -5,
        "-05",
    ]


def test_zero_padded_root_ids_are_numeric():
    assert sanitize_root_ids(["0042", 42, "43"], max_ids=10) == [42, 43]


def test_empty_id_list_is_rejected():
    with pytest.raises(ValidationError, match="At least one id"):
        sanitize_ids([" ", None], max_ids=10)


def test_oversized_batch_is_rejected():
    with pytest.raises(ValidationError, match="At most 2 ids"):
        sanitize_ids([1, 2, 3], max_ids=2)


def test_duplicates_do_not_count_towards_the_limit():
    assert sanitize_ids([1, "1", 1], max_ids=1) == [1]


@pytest.mark.parametrize("value", ["abc", 0, -4])
def test_root_ids_must_be_positive_integers(value):
    with pytest.raises(ValidationError, match="Invalid root id"):
        sanitize_root_ids([1, value], max_ids=10)


def test_notes_are_stripped_and_bounded():
    assert sanitize_optional_text("   ", "reason", 10) is None
    assert sanitize_text("  Approved by principal ", "approval_note", 30) == (
        "Approved by principal"
    )
    with pytest.raises(ValidationError, match="reason is required"):
        sanitize_text(None, "reason", 10)
    with pytest.raises(ValidationError, match="at most 5 characters"):
        sanitize_text("too long", "reason", 5)


def test_unknown_entity_key():
    assert get_entity(" Master_Teacher ").key == "master_teacher"
    with pytest.raises(UnknownEntityError):
        get_entity("janitor")


def test_role_tokens_are_normalized():
    assert normalize_role_token(" Master Teacher ") == "master_teacher"
    assert normalize_role_token("Master-Teacher") == "master_teacher"
    assert normalize_role_token(None) == ""
    # Some deployments store the role as a numeric code
    assert normalize_role_token(3) == "3"


def test_display_name_fallbacks():
    assert compute_display_name({"name": " Ana Reyes "}) == "Ana Reyes"
    row = {"first_name": "Jose", "middle_name": " ", "last_name": "Cruz"}
    assert compute_display_name(row) == "Jose Cruz"
    assert compute_display_name({"email": "a@school.test"}) == "a@school.test"
    assert compute_display_name({}, 42) == "User 42"


def test_split_display_name():
    assert split_display_name("Maria Clara Santos") == {
        "first_name": "Maria",
        "middle_name": "Clara",
        "last_name": "Santos",
    }
    assert split_display_name("Maria")["last_name"] is None


def test_identifier_fallback_format():
    policy = IdentifierPolicy(
        root_column="master_teacher_id",
        entity_columns=("master_teacher_id",),
        template="MT-{year}{seq:04d}",
    )
    assert policy.format_fallback(42, datetime(2025, 3, 1)) == "MT-250042"
