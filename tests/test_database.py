"""
tests/test_database.py — DBTable & ScrimsDatabase Tests
========================================================

SQL composition of the table gateway, read-through / write-through caching
against in-memory SQLite via the shared conftest fixtures, change events on
``database.ipc`` and the expiry sweep.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from scrims.database.client import ScrimsDatabase
from scrims.database.ipc import ChangeMessage
from scrims.database.tables import DBTable
from scrims.engine.positions import Position, UserPosition
from scrims.engine.statements import SQLStatementCreator


def run_async(coro):
    """Run an async coroutine to completion without pytest-asyncio."""
    return asyncio.run(coro)


def _never(sql, params):
    raise AssertionError("no query expected")


@pytest.fixture
def positions_table():
    return DBTable(None, Position, _never, lifetime=0)


@pytest.fixture
def database(db_engine, clock):
    return ScrimsDatabase(db_engine, clock=clock)


@pytest.fixture
def ipc_events(database):
    """Every ChangeMessage emitted on database.ipc, in order."""
    seen: list[ChangeMessage] = []
    for table in database.tables:
        for operation in ("create", "update", "remove", "expire"):
            database.ipc.subscribe(f"{table}_{operation}", seen.append)
    return seen


# ---------------------------------------------------------------------------
# SQL composition
# ---------------------------------------------------------------------------
class TestSQLComposition:
    def test_select_all(self, positions_table):
        sql, params = positions_table.select_sql()
        assert sql == 'SELECT * FROM "positions" AS "this"'
        assert params == []

    def test_select_filtered(self, positions_table):
        sql, params = positions_table.select_sql({"name": "mod"})
        assert sql == 'SELECT * FROM "positions" AS "this" WHERE "this"."name" = :p1'
        assert params == ["mod"]

    def test_select_with_creator(self, positions_table):
        sql, params = positions_table.select_sql(SQLStatementCreator.OR({"level": 1}, {"level": 2}))
        assert sql.endswith('WHERE ("this"."level" = :p1) OR ("this"."level" = :p2)')

    def test_insert_drops_unknown_columns(self, positions_table):
        sql, params = positions_table.insert_sql({"name": "mod", "colour": "red"})
        assert sql == 'INSERT INTO "positions" ("name") VALUES (:p1) RETURNING *'
        assert params == ["mod"]

    def test_insert_default_values(self, positions_table):
        sql, _ = positions_table.insert_sql({})
        assert sql == 'INSERT INTO "positions" DEFAULT VALUES RETURNING *'

    def test_update_numbering_spans_set_and_where(self, positions_table):
        sql, params = positions_table.update_sql({"id_position": 3}, {"level": 4})
        assert sql == (
            'UPDATE "positions" AS "this" SET "level" = :p1 '
            'WHERE "this"."id_position" = :p2 RETURNING *'
        )
        assert params == [4, 3]

    def test_update_requires_filter(self, positions_table):
        with pytest.raises(ValueError):
            positions_table.update_sql(None, {"level": 4})

    def test_update_requires_assignments(self, positions_table):
        with pytest.raises(ValueError):
            positions_table.update_sql({"id_position": 3}, {"colour": "red"})

    def test_delete_requires_filter(self, positions_table):
        with pytest.raises(ValueError):
            positions_table.delete_sql(None)
        with pytest.raises(ValueError):
            positions_table.delete_sql({})

    def test_delete(self, positions_table):
        sql, params = positions_table.delete_sql({"name": "mod"})
        assert sql == 'DELETE FROM "positions" AS "this" WHERE "this"."name" = :p1 RETURNING *'

    def test_call_named(self):
        sql, params = DBTable.call_sql("get_positions", {"user_id": 5})
        assert sql == 'SELECT * FROM get_positions("user_id" => :p1)'
        assert params == [5]

    def test_call_positional(self):
        sql, params = DBTable.call_sql("get_positions", [5, None])
        assert sql == "SELECT * FROM get_positions(:p1, NULL)"
        assert params == [5]

    def test_call_rejects_bad_name(self):
        with pytest.raises(ValueError, match="Invalid SQL function name"):
            DBTable.call_sql("drop table x; --")


# ---------------------------------------------------------------------------
# Read-through / write-through against SQLite
# ---------------------------------------------------------------------------
class TestTableRoundTrip:
    def test_create_caches_and_announces(self, database, ipc_events):
        row = run_async(database.positions.create({"name": "mod", "level": 2}))
        assert row.id_position is not None
        assert database.positions.cache.find({"name": "mod"}) is row
        assert [message.event for message in ipc_events] == ["positions_create"]
        assert ipc_events[0].row["name"] == "mod"

    def test_fetch_pushes_canonical_rows(self, database):
        async def scenario():
            created = await database.positions.create({"name": "mod", "level": 2})
            fetched = await database.positions.fetch({"name": "mod"})
            return created, fetched

        created, fetched = run_async(scenario())
        assert fetched == [created]

    def test_fetch_without_cache(self, database):
        async def scenario():
            await database.positions.create({"name": "mod", "level": 2})
            database.positions.cache.set_all([])
            return await database.positions.fetch(use_cache=False)

        rows = run_async(scenario())
        assert [row.name for row in rows] == ["mod"]
        assert len(database.positions.cache) == 0

    def test_fetch_does_not_cache_lapsed_rows(self, database, clock):
        async def scenario():
            await database.user_positions.create(
                {"user_id": 1, "id_position": 2, "given_at": 0, "expires_at": int(clock.now) + 5},
            )
            await database.user_positions.create(
                {"user_id": 1, "id_position": 3, "given_at": 0, "expires_at": None},
            )
            clock.advance(10)
            assert database.sweep() == 1
            return await database.user_positions.fetch({"user_id": 1})

        rows = run_async(scenario())
        assert sorted(row.id_position for row in rows) == [2, 3]
        assert [row.id_position for row in database.user_positions.cache] == [3]
        assert database.sweep() == 0

    def test_update(self, database, ipc_events):
        async def scenario():
            row = await database.positions.create({"name": "mod", "level": 2})
            await database.positions.update({"id_position": row.id_position}, {"level": 5})
            return row

        row = run_async(scenario())
        assert row.level == 5
        assert [message.event for message in ipc_events] == ["positions_create", "positions_update"]

    def test_remove(self, database, ipc_events):
        async def scenario():
            row = await database.positions.create({"name": "mod"})
            return await database.positions.remove({"id_position": row.id_position}, executor_id=7)

        removed = run_async(scenario())
        assert [row.name for row in removed] == ["mod"]
        assert len(database.positions.cache) == 0
        assert ipc_events[-1].event == "positions_remove"
        assert ipc_events[-1].executor_id == 7

    def test_fetch_map(self, database):
        async def scenario():
            await database.positions.create({"name": "mod", "level": 2})
            await database.positions.create({"name": "admin", "level": 1})
            return await database.positions.fetch_map(None, "name")

        assert set(run_async(scenario())) == {"mod", "admin"}

    def test_query(self, database):
        async def scenario():
            await database.positions.create({"name": "mod", "level": 2})
            return await database.positions.query('SELECT COUNT(*) AS n FROM "positions"')

        assert run_async(scenario()) == [{"n": 1}]

    def test_sql_fetch_is_synchronous(self, database):
        run_async(database.positions.create({"name": "mod"}))
        assert [row.name for row in database.positions.sql_fetch({"name": "mod"})] == ["mod"]

    def test_store_error_leaves_cache(self, clock):
        def failing(sql, params):
            raise RuntimeError("connection lost")

        table = DBTable(None, Position, failing, lifetime=0, clock=clock)
        table.cache.push(Position({"id_position": 1, "name": "mod"}))
        with pytest.raises(RuntimeError):
            run_async(table.remove({"id_position": 1}))
        assert table.cache.find(1) is not None

    def test_query_timeout(self):
        def slow(sql, params):
            time.sleep(0.2)
            return []

        table = DBTable(None, Position, slow, lifetime=0, timeout=0.01)
        with pytest.raises(asyncio.TimeoutError):
            run_async(table.fetch())


# ---------------------------------------------------------------------------
# Database context
# ---------------------------------------------------------------------------
class TestScrimsDatabase:
    def test_connect_loads_tables(self, database):
        run_async(database.positions.create({"name": "mod", "level": 2}))
        database.positions.cache.set_all([])
        connected = []
        database.subscribe("connected", lambda: connected.append(True))

        run_async(database.connect())
        assert database.connected
        assert connected == [True]
        assert [row.name for row in database.positions.cache] == ["mod"]
        assert database.uses_notify is False

    def test_close(self, database):
        run_async(database.connect())
        run_async(database.close())
        assert database.connected is False

    def test_handle_change_applies_and_reemits(self, database, ipc_events):
        row = {"user_id": 5, "id_position": 2, "given_at": 0, "expires_at": None, "executor_id": 9}
        message = database.handle_change("user_positions", "create", row, 9)
        assert message.event == "user_positions_create"
        assert database.user_positions.cache.resolve(5, 2) is not None
        assert ipc_events == [message]

        database.handle_change("user_positions", "remove", row)
        assert database.user_positions.cache.resolve(5, 2) is None

    def test_handle_change_unknown_table(self, database):
        assert database.handle_change("tickets", "create", {"id": 1}) is None

    def test_handle_message(self, database):
        message = ChangeMessage("positions", "create", {"id_position": 3, "name": "mod", "level": 1})
        database.handle_message(message)
        assert database.positions.cache.find(3).name == "mod"

    def test_sweep_emits_expire(self, database, ipc_events, clock):
        database.user_positions.cache.push(UserPosition({
            "user_id": 5, "id_position": 2, "given_at": 0,
            "expires_at": int(clock.now) + 5, "executor_id": None,
        }))
        assert database.sweep() == 0
        clock.advance(5)
        assert database.sweep() == 1
        assert [message.event for message in ipc_events] == ["user_positions_expire"]
        assert ipc_events[0].row["user_id"] == 5

    def test_user_cache_lifetime(self, db_engine, clock):
        database = ScrimsDatabase(db_engine, user_cache_lifetime=30, clock=clock)
        database.users.cache.push(database.users.create_row({
            "user_id": 1, "username": "a", "discriminator": 0, "joined_at": 0,
            "accent_color": None, "avatar": None,
        }))
        clock.advance(30)
        assert database.sweep() == 1
