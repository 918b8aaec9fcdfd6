"""
scrims.database.engine — Database Connection, Query Execution & Async Bridge
=============================================================================

Discord bots run on an ``asyncio`` event loop while SQLAlchemy + psycopg2 is
synchronous.  Every query therefore goes through :func:`run_db`, which ships
the synchronous call to a worker thread with ``asyncio.to_thread()`` and
hands the result back to the loop.

The row cache talks to the store through one narrow function,
:func:`execute_query`: SQL text produced by
:class:`~scrims.engine.statements.SQLStatementCreator` plus the ordered
parameter list it filled.  Placeholders are ``:p1``, ``:p2``, … so the list
maps onto SQLAlchemy ``text()`` binds by position.

Usage::

    from scrims.database.engine import create_db_engine, execute_query, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    rows = await run_db(execute_query, engine, 'SELECT * FROM "positions"', [])
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Sequence
from contextlib import contextmanager
from typing import Any, ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session

from scrims.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Engine for ``DATABASE_URL``.

    The pool keeps five connections open and allows ten more under a burst
    of role syncs; a caller waits at most 10 s for a free connection.
    Connections are pinged before use and recycled hourly.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and point it at the scrims database."
        )

    engine = create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=60 * 60,
    )
    logger.info("Database engine created → %s/%s", engine.url.host, engine.url.database)
    return engine


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create any missing position tables.

    Alembic owns the production schema; this only fills gaps on a fresh
    development database.
    """
    Base.metadata.create_all(engine)
    logger.info("Position tables ready (%s)", ", ".join(sorted(Base.metadata.tables)))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Transactional session: commit when the block exits cleanly, else roll back."""
    with Session(engine) as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        session.commit()


# ---------------------------------------------------------------------------
# Query execution: the store boundary used by the row cache
# ---------------------------------------------------------------------------
def bind_params(params: Sequence[Any]) -> dict[str, Any]:
    """Map an ordered parameter list onto the ``:pN`` bind names."""
    return {f"p{idx}": value for idx, value in enumerate(params, start=1)}


def execute_query(engine: Engine, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
    """Run *sql* in its own transaction and return the rows as dicts.

    Statements that return no rows (e.g. an ``UPDATE`` without
    ``RETURNING``) yield an empty list.  Database errors propagate unchanged.
    """
    logger.debug("SQL: %s %s", sql, list(params))
    with get_session(engine) as session:
        result = session.execute(text(sql), bind_params(params))
        if not result.returns_rows:
            return []
        return [dict(row) for row in result.mappings().all()]


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await *func* on a worker thread so the gateway loop keeps running.

    ``DBTable`` sends every query through here::

        rows = await run_db(execute_query, engine, sql, params)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
