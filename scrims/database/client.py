"""
scrims.database.client — Database Context (tables, caches, change channel)
===========================================================================

:class:`ScrimsDatabase` owns one :class:`~scrims.database.tables.DBTable`
(and therefore one row cache) per table.  There are no module-level caches:
construct a context, :meth:`~ScrimsDatabase.connect` it, and
:meth:`~ScrimsDatabase.close` it on shutdown.  Tests build isolated
contexts against SQLite.

Change propagation:

* Local writes update the local cache immediately.
* On PostgreSQL the change is also published with ``pg_notify`` and every
  process (this one included) applies it from the LISTEN thread, then
  re-emits it on :attr:`ScrimsDatabase.ipc` as ``{table}_{operation}``.
* On other dialects there is no channel; the change is emitted on ``ipc``
  directly.

``ipc`` events carry a :class:`~scrims.database.ipc.ChangeMessage`.  The
expiry sweep emits ``{table}_expire`` for every swept row.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from scrims.constants import DEFAULT_CACHE_LIFETIME
from scrims.database.engine import execute_query, run_db
from scrims.database.ipc import ChangeListener, ChangeMessage, send_change_notify
from scrims.database.tables import DBTable
from scrims.engine.events import Observable
from scrims.engine.positions import Position, PositionRole, UserPosition, UserProfile
from scrims.engine.row import TableRow

if TYPE_CHECKING:
    from sqlalchemy import Engine

__all__ = ["ScrimsDatabase"]

logger = logging.getLogger(__name__)


class ScrimsDatabase(Observable):
    """Process-wide database context.

    Emits ``connected`` once every fully-cached table has been loaded.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        bot: Any = None,
        user_cache_lifetime: int = DEFAULT_CACHE_LIFETIME,
        query_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self.engine = engine
        self.bot = bot
        self.ipc = Observable()
        self.connected = False
        self._listener: ChangeListener | None = None

        executor = functools.partial(execute_query, engine)
        options = {"timeout": query_timeout, "clock": clock}

        # Small reference tables are cached in full and never expire
        self.positions: DBTable[Position] = DBTable(self, Position, executor, lifetime=0, **options)
        self.position_roles: DBTable[PositionRole] = DBTable(
            self, PositionRole, executor, lifetime=0, **options,
        )
        self.user_positions: DBTable[UserPosition] = DBTable(
            self, UserPosition, executor, lifetime=0, **options,
        )
        self.users: DBTable[UserProfile] = DBTable(
            self, UserProfile, executor, lifetime=user_cache_lifetime, **options,
        )

        self.tables: dict[str, DBTable] = {
            table.name: table
            for table in (self.positions, self.position_roles, self.user_positions, self.users)
        }

    def __repr__(self) -> str:
        return f"<ScrimsDatabase connected={self.connected} tables={list(self.tables)}>"

    @property
    def uses_notify(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def connect(self) -> None:
        """Load the fully-cached tables and start the change listener."""
        for table in (self.positions, self.position_roles, self.user_positions):
            await table.load()

        if self.uses_notify and self._listener is None:
            self._listener = ChangeListener(self.engine, self.handle_message)
            self._listener.start(asyncio.get_running_loop())

        self.connected = True
        logger.info("Database connected (%s)", self.engine.dialect.name)
        self.emit("connected")

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        self.connected = False
        logger.info("Database closed")

    # -------------------------------------------------------------------
    # Change channel
    # -------------------------------------------------------------------
    async def publish_change(
        self,
        table: str,
        operation: str,
        row: TableRow,
        *,
        executor_id: int | None = None,
    ) -> None:
        """Announce a local write to every process (this one included)."""
        message = ChangeMessage(table, operation, row.to_sql_data(), executor_id)
        if self.uses_notify and self._listener is not None:
            await run_db(send_change_notify, self.engine, message)
        else:
            self.ipc.emit(message.event, message)

    def handle_message(self, message: ChangeMessage) -> None:
        """Apply a change received from the channel, then re-emit it on ``ipc``."""
        self.handle_change(message.table, message.operation, message.row, message.executor_id)

    def handle_change(
        self,
        table: str,
        operation: str,
        row: dict[str, Any],
        executor_id: int | None = None,
    ) -> ChangeMessage | None:
        target = self.tables.get(table)
        if target is None:
            logger.warning("Change for unknown table %s ignored", table)
            return None

        message = ChangeMessage(table, operation, dict(row), executor_id)
        entry = target.create_row(row)
        if operation in ("create", "update"):
            target.cache.push(entry)
        elif operation in ("remove", "expire"):
            target.cache.remove(entry.id)
        self.ipc.emit(message.event, message)
        return message

    # -------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------
    def sweep(self) -> int:
        """Sweep every cache; emits ``{table}_expire`` per evicted row."""
        total = 0
        for table in self.tables.values():
            for row in table.cache.remove_expired():
                total += 1
                message = ChangeMessage(table.name, "expire", row.to_sql_data())
                self.ipc.emit(message.event, message)
        if total:
            logger.info("Cache sweep evicted %d rows", total)
        return total
