"""
tests/test_row.py — TableRow Unit Tests
========================================

Identity, partial rows, updates that ignore unknown keys, comparison
semantics and cache expiry of schema-bound rows.
"""

from __future__ import annotations

from scrims.engine.positions import Position, PositionRole, UserPosition
from scrims.engine.row import UNSET, TableRow, TableSchema


class Keyless(TableRow):
    schema = TableSchema("keyless", ("a", "b"))


class TestIdentity:
    def test_id_from_unique_keys(self):
        row = PositionRole({"guild_id": 1, "id_position": 2, "role_id": 3})
        assert row.id == "1#2#3"

    def test_single_key_id(self):
        assert Position({"id_position": 7, "name": "mod"}).id == "7"

    def test_missing_key_means_no_id(self):
        row = PositionRole({"guild_id": 1, "id_position": 2})
        assert row.id is None

    def test_keyless_table_uses_all_columns(self):
        assert Keyless({"a": 1, "b": "x"}).id == "1#x"
        assert Keyless({"a": 1}).id is None

    def test_none_is_a_set_value(self):
        row = Keyless({"a": None, "b": None})
        assert row.id == "None#None"

    def test_partial(self):
        assert Position({"id_position": 1}).partial is True
        assert Position({"id_position": 1, "name": "x", "level": None}).partial is False


class TestUpdate:
    def test_unknown_keys_ignored(self):
        row = Position({"id_position": 1, "name": "mod", "colour": "red"})
        assert "colour" not in row.to_sql_data()
        assert not hasattr(row, "colour")

    def test_unset_values_skipped(self):
        row = Position({"id_position": 1, "name": "mod"})
        row.update({"name": UNSET, "level": 4})
        assert row.name == "mod"
        assert row.level == 4

    def test_update_from_row(self):
        row = Position({"id_position": 1, "name": "mod"})
        row.update(Position({"level": 2}))
        assert row.to_sql_data() == {"id_position": 1, "name": "mod", "level": 2}

    def test_get_field_unset(self):
        row = Position({"id_position": 1})
        assert row.get_field("name") is UNSET
        assert row.is_set("id_position")
        assert not row.is_set("name")

    def test_to_sql_data_in_schema_order(self):
        row = Position({"level": 1, "name": "mod", "id_position": 3})
        assert list(row.to_sql_data()) == ["id_position", "name", "level"]

    def test_clone_is_detached(self):
        row = Position({"id_position": 1, "name": "mod"})
        row.set_cache_expiration(10)
        clone = row.clone()
        clone.update({"name": "other"})
        assert row.name == "mod"
        assert clone.is_cache_expired(100) is False


class TestComparison:
    def test_equals_by_unique_key(self):
        a = Position({"id_position": 1, "name": "mod"})
        b = Position({"id_position": 1, "name": "renamed"})
        assert a.equals(b)
        assert not a.exactly_equals(b)

    def test_equals_falls_back_to_fields(self):
        row = Position({"id_position": 1, "name": "mod", "level": 2})
        assert row.equals({"name": "mod"})
        assert not row.equals({"name": "admin"})

    def test_equals_mapping_with_key(self):
        row = Position({"id_position": 1, "name": "mod"})
        assert row.equals({"id_position": 1, "name": "ignored"})
        assert not row.equals({"id_position": 2})

    def test_exactly_equals_ignores_private_keys(self):
        row = Position({"id_position": 1, "name": "mod"})
        assert row.exactly_equals({"name": "mod", "_note": "x"})

    def test_exactly_equals_unset_on_other_side_ignored(self):
        row = Position({"id_position": 1, "name": "mod", "level": 2})
        assert row.exactly_equals(Position({"name": "mod"}))

    def test_matches_nested_relation(self, scrims_env):
        record = UserPosition(
            {"user_id": 5, "id_position": 2, "given_at": 0}, client=scrims_env.database,
        )
        assert record.matches({"position": {"name": "staff"}})
        assert not record.matches({"position": {"name": "support"}})

    def test_to_selector(self):
        assert Position({"id_position": 4, "name": "x"}).to_selector() == {"id_position": 4}
        assert Position({"name": "x"}).to_selector() == {"name": "x"}


class TestExpiry:
    def test_no_expiration(self):
        assert Position({"id_position": 1}).is_cache_expired(10**12) is False

    def test_expiration_reached(self):
        row = Position({"id_position": 1})
        row.set_cache_expiration(100)
        assert row.is_cache_expired(99) is False
        assert row.is_cache_expired(100) is True

    def test_no_clock_no_timer_expiry(self):
        row = Position({"id_position": 1})
        row.set_cache_expiration(1)
        assert row.is_cache_expired() is False

    def test_record_expiry_applies_without_clock(self):
        record = UserPosition({"user_id": 1, "id_position": 1, "given_at": 0, "expires_at": 50})
        record.set_cache_expiration(10**12)
        assert record.is_cache_expired() is True

    def test_user_position_expires_with_record(self):
        record = UserPosition({"user_id": 1, "id_position": 1, "given_at": 0, "expires_at": 50})
        assert record.is_cache_expired(49) is False
        assert record.is_cache_expired(50) is True
        assert not record.is_permanent

    def test_permanent_record(self):
        record = UserPosition({"user_id": 1, "id_position": 1, "given_at": 0, "expires_at": None})
        assert record.is_permanent
        assert record.is_expired(10**12) is False


class TestSchema:
    def test_schema_from_model(self):
        schema = UserPosition.schema
        assert schema.name == "user_positions"
        assert schema.unique_keys == ("user_id", "id_position")
        assert "expires_at" in schema.columns
