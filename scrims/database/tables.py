"""
scrims.database.tables — Table Gateway (read-through / write-through cache)
============================================================================

A :class:`DBTable` pairs one table's :class:`~scrims.engine.cache.RowCache`
with the SQL that reads and writes it.  Statements are composed with
:class:`~scrims.engine.statements.SQLStatementCreator` and executed by a
plain ``executor(sql, params) -> list[dict]`` callable (normally
:func:`scrims.database.engine.execute_query` bound to an engine) on a worker
thread through :func:`~scrims.database.engine.run_db`.

Every query is bounded by ``asyncio.wait_for(..., timeout)``.  Store errors
and timeouts propagate unchanged; the cache is only touched after a query
succeeded, so a failed write leaves the last good state in place.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from scrims.constants import DEFAULT_CACHE_LIFETIME
from scrims.database.engine import run_db
from scrims.engine.cache import RowCache
from scrims.engine.row import TableRow
from scrims.engine.statements import SQLStatementCreator, quote_identifier

if TYPE_CHECKING:
    from scrims.database.client import ScrimsDatabase

__all__ = ["DBTable", "Executor"]

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=TableRow)

Executor = Callable[[str, Sequence[Any]], list[dict[str, Any]]]

_FUNCTION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Alias the table is bound to in SELECT / UPDATE / DELETE
ALIAS = "this"


class DBTable(Generic[R]):
    """One table: its schema, its row cache and its SQL."""

    def __init__(
        self,
        client: ScrimsDatabase | None,
        row_class: type[R],
        executor: Executor,
        *,
        lifetime: int = DEFAULT_CACHE_LIFETIME,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.row_class = row_class
        self.schema = row_class.schema
        self.name = self.schema.name
        self.timeout = timeout
        self._executor = executor
        self.cache: RowCache[R] = RowCache(self.name, lifetime=lifetime, clock=clock)

    def __repr__(self) -> str:
        return f"<DBTable {self.name!r} cached={len(self.cache)}>"

    def create_row(self, data: Mapping[str, Any]) -> R:
        return self.row_class(data, client=self.client)

    # -------------------------------------------------------------------
    # SQL composition (pure)
    # -------------------------------------------------------------------
    @staticmethod
    def _creator(selector: Any) -> SQLStatementCreator:
        if isinstance(selector, SQLStatementCreator):
            return selector
        return SQLStatementCreator(selector)

    def _where(self, selector: Any, params: list[Any]) -> str:
        if selector is None:
            return ""
        where = self._creator(selector).to_where_statement(params)
        return f" WHERE {where}" if where else ""

    def select_sql(self, selector: Any = None) -> tuple[str, list[Any]]:
        params: list[Any] = []
        table = quote_identifier(self.name)
        where = self._where(selector, params)
        return f'SELECT * FROM {table} AS "{ALIAS}"{where}', params

    def insert_sql(self, data: Mapping[str, Any] | TableRow) -> tuple[str, list[Any]]:
        params: list[Any] = []
        values = SQLStatementCreator(self._columns_only(data)).to_insert_statement(params)
        table = quote_identifier(self.name)
        if not values:
            return f"INSERT INTO {table} DEFAULT VALUES RETURNING *", params
        return f"INSERT INTO {table} {values} RETURNING *", params

    def update_sql(self, selector: Any, data: Mapping[str, Any] | TableRow) -> tuple[str, list[Any]]:
        params: list[Any] = []
        assignments = SQLStatementCreator(self._columns_only(data)).to_set_statement(params)
        if not assignments:
            raise ValueError(f"Update of {self.name} has nothing to set")
        where = self._where(selector, params)
        if not where:
            raise ValueError(f"Refusing to update every row of {self.name}")
        table = quote_identifier(self.name)
        return f'UPDATE {table} AS "{ALIAS}" SET {assignments}{where} RETURNING *', params

    def delete_sql(self, selector: Any) -> tuple[str, list[Any]]:
        params: list[Any] = []
        where = self._where(selector, params)
        if not where:
            raise ValueError(f"Refusing to delete every row of {self.name}")
        table = quote_identifier(self.name)
        return f'DELETE FROM {table} AS "{ALIAS}"{where} RETURNING *', params

    @staticmethod
    def call_sql(function: str, args: Mapping[str, Any] | Sequence[Any] = ()) -> tuple[str, list[Any]]:
        """``SELECT * FROM function(...)``; a mapping uses named notation."""
        if not _FUNCTION_NAME.match(function):
            raise ValueError(f"Invalid SQL function name: {function!r}")
        params: list[Any] = []
        if isinstance(args, Mapping):
            arguments = SQLStatementCreator(args).to_func_params(params)
        else:
            arguments = SQLStatementCreator(
                {f"arg{idx}": value for idx, value in enumerate(args)}
            ).to_func_args(params)
        return f"SELECT * FROM {function}({arguments})", params

    def _columns_only(self, data: Mapping[str, Any] | TableRow) -> dict[str, Any]:
        items = data.to_sql_data() if isinstance(data, TableRow) else data
        return {key: value for key, value in items.items() if key in self.schema.columns}

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------
    def sql_fetch(self, selector: Any = None) -> list[R]:
        """Synchronous SELECT without touching the cache (for worker threads)."""
        sql, params = self.select_sql(selector)
        return [self.create_row(data) for data in self._executor(sql, params)]

    async def _execute(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        return await asyncio.wait_for(run_db(self._executor, sql, params), timeout=self.timeout)

    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run composed SQL and return raw rows."""
        return await self._execute(sql, list(params))

    async def fetch(self, selector: Any = None, *, use_cache: bool = True) -> list[R]:
        """Read rows from the store and, by default, merge them into the cache.

        With ``use_cache`` the returned rows are the canonical cache entries.
        Rows that have already lapsed are returned detached unless an entry
        with their id is cached.
        """
        rows = [self.create_row(data) for data in await self._execute(*self.select_sql(selector))]
        if not use_cache:
            return rows
        return [
            row if row.id not in self.cache and self.cache.is_expired(row) else self.cache.push(row)
            for row in rows
        ]

    async def fetch_map(self, selector: Any = None, *keys: str) -> dict[Any, R]:
        rows = await self.fetch(selector)
        result: dict[Any, R] = {}
        for row in rows:
            value: Any = row
            for key in keys:
                value = getattr(value, key, None)
            result[value] = row
        return result

    async def load(self) -> list[R]:
        """Replace the cache with the full table."""
        rows = await self.fetch(use_cache=False)
        self.cache.set_all(rows)
        logger.info("Loaded %d rows into %s cache", len(self.cache), self.name)
        return self.cache.values()

    async def create(self, data: Mapping[str, Any] | R, *, executor_id: int | None = None) -> R:
        """INSERT one row and cache the stored version."""
        created = await self._execute(*self.insert_sql(data))
        row = self.cache.push(self.create_row(created[0]))
        await self._publish("create", [row], executor_id)
        return row

    async def update(
        self, selector: Any, data: Mapping[str, Any] | R, *, executor_id: int | None = None,
    ) -> list[R]:
        """UPDATE matching rows; cached matches are updated in place."""
        returned = await self._execute(*self.update_sql(selector, data))
        if isinstance(selector, Mapping):
            self.cache.update(selector, self._columns_only(data))
        rows = [self.cache.push(self.create_row(row)) for row in returned]
        await self._publish("update", rows, executor_id)
        return rows

    async def remove(self, selector: Any, *, executor_id: int | None = None) -> list[R]:
        """DELETE matching rows and evict them from the cache."""
        returned = [self.create_row(row) for row in await self._execute(*self.delete_sql(selector))]
        for row in returned:
            self.cache.remove(row.id)
        await self._publish("remove", returned, executor_id)
        return returned

    async def call(self, function: str, args: Mapping[str, Any] | Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Call a set-returning SQL function."""
        return await self._execute(*self.call_sql(function, args))

    async def _publish(self, operation: str, rows: list[R], executor_id: int | None) -> None:
        if self.client is None:
            return
        for row in rows:
            await self.client.publish_change(self.name, operation, row, executor_id=executor_id)
