"""
scrims.database.ipc — Cross-process Row Change Channel (PG LISTEN/NOTIFY)
==========================================================================

Every write made through a :class:`~scrims.database.tables.DBTable` is
announced on the ``scrims_changes`` channel so other bot processes can keep
their row caches consistent.  Payloads are JSON objects::

    {"table": "user_positions", "operation": "create",
     "row": {...column values...}, "executor_id": 123 | null}

The listener runs on a daemon thread with a raw psycopg2 connection and
``select()``.  It never touches the caches itself: decoded messages are
handed to the event loop with ``loop.call_soon_threadsafe``.  Lost
connections are retried with exponential backoff plus jitter until a
circuit breaker gives up.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from scrims.constants import CHANGE_CHANNEL

if TYPE_CHECKING:
    from sqlalchemy import Engine

__all__ = [
    "ALLOWED_NOTIFY_TABLES",
    "OPERATIONS",
    "ChangeListener",
    "ChangeMessage",
    "send_change_notify",
]

logger = logging.getLogger(__name__)

# Tables whose changes may be published or accepted from the channel
ALLOWED_NOTIFY_TABLES: frozenset[str] = frozenset({
    "positions",
    "position_roles",
    "user_positions",
    "users",
})

OPERATIONS: frozenset[str] = frozenset({"create", "update", "remove", "expire"})

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more
MAX_PAYLOAD_BYTES = 7999


@dataclass(frozen=True, slots=True)
class ChangeMessage:
    """One row change.  ``row`` holds plain column values."""

    table: str
    operation: str
    row: dict[str, Any] = field(default_factory=dict)
    executor_id: int | None = None

    def __post_init__(self) -> None:
        if self.table not in ALLOWED_NOTIFY_TABLES:
            raise ValueError(
                f"Invalid table name for change message: '{self.table}'. "
                f"Allowed: {sorted(ALLOWED_NOTIFY_TABLES)}"
            )
        if self.operation not in OPERATIONS:
            raise ValueError(f"Invalid change operation: '{self.operation}'")

    @property
    def event(self) -> str:
        """Name under which the message is emitted on ``database.ipc``."""
        return f"{self.table}_{self.operation}"

    def to_json(self) -> str:
        return json.dumps(
            {
                "table": self.table,
                "operation": self.operation,
                "row": self.row,
                "executor_id": self.executor_id,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> ChangeMessage:
        """Parse a channel payload.  Raises ``ValueError`` on malformed input."""
        data = json.loads(raw)
        if not isinstance(data, Mapping):
            raise ValueError(f"Change payload is not an object: {raw!r}")
        row = data.get("row") or {}
        if not isinstance(row, Mapping):
            raise ValueError(f"Change payload row is not an object: {raw!r}")
        executor_id = data.get("executor_id")
        return cls(
            table=str(data.get("table", "")),
            operation=str(data.get("operation", "")),
            row=dict(row),
            executor_id=int(executor_id) if executor_id is not None else None,
        )


def send_change_notify(engine: Engine, message: ChangeMessage) -> None:
    """Publish *message* on the change channel (separate connection).

    The payload is passed as a bound parameter to ``pg_notify`` so it needs
    no escaping.  Call via ``run_db()`` from the event loop.
    """
    payload = message.to_json()
    if len(payload.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise ValueError(f"Change payload for {message.event} exceeds {MAX_PAYLOAD_BYTES} bytes")
    with engine.connect() as conn:
        conn.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": CHANGE_CHANNEL, "payload": payload},
        )
        conn.commit()


class ChangeListener:
    """Background LISTEN thread that forwards change messages to a loop.

    Usage::

        listener = ChangeListener(engine, database.handle_message)
        listener.start(asyncio.get_running_loop())
        ...
        listener.stop()
    """

    def __init__(
        self,
        engine: Engine,
        callback: Callable[[ChangeMessage], Any],
        *,
        max_reconnect_attempts: int = 10,
    ) -> None:
        self._engine = engine
        self._callback = callback
        self._max_reconnect_attempts = max_reconnect_attempts
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._healthy = False
        self._failed = False

    @property
    def healthy(self) -> bool:
        """True if the LISTEN thread is alive and connected."""
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        """True if the listener exhausted its reconnect attempts."""
        return self._failed

    def dispatch(self, raw_payload: str) -> None:
        """Decode one payload and schedule the callback on the loop."""
        try:
            message = ChangeMessage.from_json(raw_payload)
        except (ValueError, TypeError):
            logger.warning("Invalid change payload: %s", raw_payload)
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Cannot dispatch %s — no event loop available", message.event)
            return
        loop.call_soon_threadsafe(self._callback, message)

    def stop(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("PG change listener thread stopped")

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        import psycopg2

        self._loop = loop
        self._shutdown_event.clear()
        max_backoff = 60.0
        base_backoff = 1.0

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs the real one
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {CHANGE_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", CHANGE_CHANNEL)

                    attempt = 0
                    self._healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            logger.debug("NOTIFY received: %s", notify.payload)
                            try:
                                self.dispatch(notify.payload or "")
                            except Exception:
                                logger.exception("Error handling NOTIFY: %s", notify.payload)

                except Exception:
                    self._healthy = False
                    attempt += 1

                    if attempt >= self._max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Cross-process cache sync disabled.",
                            self._max_reconnect_attempts,
                        )
                        self._failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, self._max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Closing the LISTEN connection failed", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-change-listener")
        self._thread = thread
        thread.start()
        logger.info("PG change listener thread started")
