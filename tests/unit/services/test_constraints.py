"""Unit tests for unique and primary key constraint checks."""

import pytest

from tablemanager.errors import ImmutableColumnError, UniqueConstraintError
from tablemanager.models.column import Column
from tablemanager.models.table import Table
from tablemanager.services.constraints import (
    ensure_primary_key_unchanged,
    ensure_unique_across,
    ensure_unique_value,
    values_equal,
)
from tablemanager.services.keys import RecordKeyResolver


@pytest.fixture
def table() -> Table:
    return Table(
        name="users",
        columns=[
            Column(name="id", type="INTEGER", primary_key=True),
            Column(name="email", unique=True),
            Column(name="name"),
        ],
        records=[
            {"id": 1, "email": "a@x.io", "name": "A"},
            {"id": 2, "email": "b@x.io", "name": "B"},
            {"id": 3, "email": None, "name": "C"},
        ],
    )


@pytest.fixture
def resolver() -> RecordKeyResolver:
    return RecordKeyResolver()


class TestEnsureUniqueValue:
    """Tests for ensure_unique_value."""

    def test_duplicate_value_rejected(self, table: Table, resolver: RecordKeyResolver) -> None:
        with pytest.raises(UniqueConstraintError) as exc_info:
            ensure_unique_value(table, "email", "a@x.io", resolver, exclude_keys={"2"})

        assert exc_info.value.column_name == "email"
        assert exc_info.value.value == "a@x.io"

    def test_record_may_keep_its_own_value(self, table: Table, resolver: RecordKeyResolver) -> None:
        ensure_unique_value(table, "email", "a@x.io", resolver, exclude_keys={"1"})

    def test_null_never_collides(self, table: Table, resolver: RecordKeyResolver) -> None:
        ensure_unique_value(table, "email", None, resolver)

    def test_non_unique_column_not_checked(self, table: Table, resolver: RecordKeyResolver) -> None:
        ensure_unique_value(table, "name", "A", resolver)


class TestEnsureUniqueAcross:
    """Tests for ensure_unique_across."""

    def test_duplicate_within_list_rejected(self, table: Table) -> None:
        with pytest.raises(UniqueConstraintError):
            ensure_unique_across(table, [{"email": "x@x.io"}, {"email": "x@x.io"}])

    def test_multiple_nulls_allowed(self, table: Table) -> None:
        ensure_unique_across(table, [{"email": None}, {"email": None}, {}])


class TestEnsurePrimaryKeyUnchanged:
    """Tests for ensure_primary_key_unchanged."""

    def test_changed_key_rejected(self, table: Table) -> None:
        with pytest.raises(ImmutableColumnError):
            ensure_primary_key_unchanged(table, table.records[0], {"id": 10})

    def test_same_key_value_allowed(self, table: Table) -> None:
        ensure_primary_key_unchanged(table, table.records[0], {"id": 1, "name": "Ann"})


def test_values_equal_keeps_booleans_apart_from_numbers() -> None:
    assert values_equal(True, True) is True
    assert values_equal(True, 1) is False
    assert values_equal(0, False) is False
    assert values_equal(1, 1.0) is True
