"""
scrims.engine.cache — In-Memory Row Cache with Typed Change Events
===================================================================

One :class:`RowCache` per table, keyed by :attr:`TableRow.id`.  Every
mutation emits a :class:`~scrims.engine.events.CacheEvent` synchronously,
first under its specific kind (``push`` / ``update`` / ``remove``) and then
under ``change``, both carrying the same payload.

Entries carry an expiry timestamp (``lifetime`` seconds after their last
push or update).  Expired entries stay readable until the next
:meth:`RowCache.remove_expired` sweep, which the bot runs every
:data:`~scrims.constants.SWEEP_INTERVAL` seconds.  ``lifetime=0`` disables
timer expiry for tables that are loaded in full.

The cache is not thread-safe: it is only touched from the event loop
thread, where each method runs to completion without suspending.

Usage::

    cache = RowCache("positions", lifetime=0)
    cache.subscribe(ChangeKind.PUSH, lambda event: print(event.row))
    position = cache.push(Position({"id_position": 1, "name": "mod"}))
    cache.find({"name": "mod"})    # -> position
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, Generic, TypeVar

from scrims.constants import DEFAULT_CACHE_LIFETIME, ID_SEPARATOR
from scrims.engine.events import CacheEvent, ChangeKind, Observable
from scrims.engine.row import TableRow

__all__ = ["RowCache"]

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=TableRow)


def _walk(value: Any, keys: Iterable[str]) -> Any:
    for key in keys:
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(key)
        else:
            value = getattr(value, key, None)
    return value


def _join_id(id_: Any) -> str:
    if isinstance(id_, (list, tuple)):
        return ID_SEPARATOR.join(str(part) for part in id_)
    return str(id_)


class RowCache(Observable, Generic[R]):
    """TTL cache of table rows with push / update / remove notifications."""

    def __init__(
        self,
        table: str = "",
        *,
        lifetime: int = DEFAULT_CACHE_LIFETIME,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self.table = table
        self.lifetime = lifetime
        self._clock = clock
        self._data: dict[str, R] = {}

    def __repr__(self) -> str:
        return f"<RowCache {self.table!r} entries={len(self._data)}>"

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, id_: object) -> bool:
        return id_ in self._data

    def __iter__(self) -> Iterator[R]:
        return iter(list(self._data.values()))

    def values(self) -> list[R]:
        return list(self._data.values())

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def _emit(self, kind: ChangeKind, row: R) -> None:
        event = CacheEvent(kind, row.clone())
        self.emit(kind, event)
        self.emit(ChangeKind.CHANGE, event)

    # -------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------
    def set_expiration(self, row: R) -> None:
        if self.lifetime > 0:
            row.set_cache_expiration(int(self._clock() + self.lifetime))

    def is_expired(self, row: R) -> bool:
        return row.is_cache_expired(self._clock())

    def remove_expired(self, now: float | None = None) -> list[R]:
        """Evict every entry whose ``is_cache_expired(now)`` is true."""
        if now is None:
            now = self._clock()
        expired = [key for key, row in self._data.items() if row.is_cache_expired(now)]
        removed = [row for row in (self.remove(key) for key in expired) if row is not None]
        if removed:
            logger.debug("Swept %d expired rows from %s", len(removed), self.table or "cache")
        return removed

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def set(self, id_: str, row: R) -> None:
        """Store *row* under *id_* without events or expiry bookkeeping."""
        self._data[id_] = row

    def push(self, row: R | None, existing: R | None = None) -> R | None:
        """Insert *row*, or merge it into the entry that already has its id.

        Returns the canonical entry: *existing* when merged, else *row*.
        Rows without an id (partial rows) are returned but not cached.
        """
        if row is None:
            return None
        if existing is None and row.id is not None:
            existing = self._data.get(row.id)
        if existing is not None:
            self.update_with(row, existing)
            return existing
        if row.id is None:
            logger.debug("Not caching partial row %r", row)
            return row

        self.set(row.id, row)
        self.set_expiration(row)
        self._emit(ChangeKind.PUSH, row)
        return row

    def set_all(self, rows: Iterable[R]) -> None:
        """Replace the whole content with *rows*.

        New ids are announced with ``push``, vanished ids are evicted with
        ``remove``, then the store is swapped and swept.
        """
        now = self._clock()
        rows = [row for row in rows if row.id is not None]
        new_data = {row.id: row for row in rows if not row.is_cache_expired(now)}

        for row in new_data.values():
            if row.id not in self._data:
                self._emit(ChangeKind.PUSH, row)
        for key in [key for key in self._data if key not in new_data]:
            self.remove(key)

        self._data = new_data
        for row in new_data.values():
            self.set_expiration(row)
        self.remove_expired()

    def update_with(self, data: Mapping[str, Any] | R, existing: R) -> bool:
        """Apply *data* to *existing*; re-key it when its id changes.

        Returns ``False`` when *data* would not change anything.
        """
        if existing.exactly_equals(data):
            return False

        old_id = existing.id
        previous = existing.clone()
        existing.update(data)
        if existing.id != old_id:
            # Re-keyed: the old identity leaves, the row itself lives on
            self._data.pop(old_id, None)
            self._emit(ChangeKind.REMOVE, previous)
            self.push(existing)
        else:
            self.set_expiration(existing)
            self._emit(ChangeKind.UPDATE, existing)
        return True

    def update(self, selector: Any, data: Mapping[str, Any] | R) -> list[R]:
        """Apply *data* to every entry matched by *selector*."""
        matched = self.get(selector)
        for row in matched:
            self.update_with(data, row)
        return matched

    def remove(self, id_: str | None) -> R | None:
        """Evict *id_*; removing an absent id is a no-op returning ``None``."""
        if id_ is None:
            return None
        row = self._data.pop(id_, None)
        if row is None:
            return None
        row.destroy()
        self._emit(ChangeKind.REMOVE, row)
        return row

    def filter_out(self, selector: Any) -> list[R]:
        """Remove and return every entry matched by *selector*."""
        removed = self.get(selector)
        for row in removed:
            self.remove(row.id)
        return removed

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def resolve(self, *ids: Any) -> R | None:
        """Look up one entry by its id parts (joined with ``#``)."""
        return self._data.get(ID_SEPARATOR.join(str(part) for part in ids))

    def get(self, selector: Any = None) -> list[R]:
        """Entries matching *selector*.

        ``None`` selects everything, a scalar or a list of ids selects by id
        (a tuple/list entry is a composite id), a mapping or row selects by
        :meth:`TableRow.equals`.
        """
        if selector is None:
            return self.values()
        if isinstance(selector, (Mapping, TableRow)):
            return self.filter(lambda row: row.equals(selector))
        if not isinstance(selector, (list, tuple, set, frozenset)):
            selector = [selector]
        rows = (self._data.get(_join_id(id_)) for id_ in selector)
        return [row for row in rows if row is not None]

    def find(self, selector: Any) -> R | None:
        """First entry matching *selector* (a predicate is also accepted)."""
        if selector is None:
            return None
        if callable(selector) and not isinstance(selector, TableRow):
            return next(iter(self.filter(selector)), None)
        if isinstance(selector, (Mapping, TableRow)):
            return next(iter(self.filter(lambda row: row.equals(selector))), None)
        return self._data.get(_join_id(selector))

    def filter(self, predicate: Callable[[R], bool]) -> list[R]:
        return [row for row in self._data.values() if predicate(row)]

    def get_map(self, *keys: str) -> dict[Any, R]:
        """Index every entry by the value at attribute path *keys*."""
        return {_walk(row, keys): row for row in self._data.values()}

    def get_array_map(self, *keys: str) -> dict[Any, list[R]]:
        """Group every entry by the value at attribute path *keys*."""
        grouped: dict[Any, list[R]] = {}
        for row in self._data.values():
            grouped.setdefault(_walk(row, keys), []).append(row)
        return grouped
