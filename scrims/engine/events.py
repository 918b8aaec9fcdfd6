"""
scrims.engine.events — Typed Change Events & Subscriptions
===========================================================

A small observer used by the row cache, the permissions manager, the host
guild manager and the database change channel.  Emission is synchronous:
subscribers run in registration order at the point of the mutation, so they
observe events in exactly the order the mutations happened.

A subscriber that returns an awaitable is scheduled on the running loop and
not awaited (fire-and-forget); its completion order is not tied to later
emissions.  A subscriber that raises is logged and skipped so one broken
listener cannot interrupt a cache mutation half way through.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from scrims.engine.row import TableRow

__all__ = ["CacheEvent", "ChangeKind", "Observable"]

logger = logging.getLogger(__name__)


class ChangeKind(enum.StrEnum):
    """Kinds of cache mutation.  ``CHANGE`` mirrors every other kind."""
    PUSH = "push"
    UPDATE = "update"
    REMOVE = "remove"
    CHANGE = "change"


@dataclass(frozen=True, slots=True)
class CacheEvent:
    """Payload of a cache event.  ``row`` is a detached clone."""

    kind: ChangeKind
    row: TableRow


class Observable:
    """Minimal subscribe / emit registry keyed by event name."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[..., Any]]] = {}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register *callback* for *event* and return an unsubscribe function."""
        self._subscribers.setdefault(str(event), []).append(callback)

        def _unsubscribe() -> None:
            callbacks = self._subscribers.get(str(event), [])
            if callback in callbacks:
                callbacks.remove(callback)

        return _unsubscribe

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(str(event), []))

    def emit(self, event: str, *args: Any) -> None:
        """Call every subscriber of *event* with *args*, in order."""
        for callback in list(self._subscribers.get(str(event), [])):
            try:
                result = callback(*args)
            except Exception:
                logger.exception("Subscriber for '%s' failed", event)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop for async subscriber of '%s' — dropped", event)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "Async subscriber for '%s' failed", event, exc_info=t.exception(),
                )

        task.add_done_callback(_done)
