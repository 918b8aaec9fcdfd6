"""
scrims.engine.ledger — Explicit Position Holdings
==================================================

The ledger is a user's ``user_positions`` records.  An active record grants
its position and the host-guild roles are not consulted.  A lapsed record
counts as absent, so the answer is the same before and after the sweep that
evicts it: the ledger has no opinion (:attr:`Verdict.INDETERMINATE`).

A position can be revoked explicitly (after a record is removed or expires);
the ledger then denies it until a new record for it is added.

:class:`LedgerSnapshot` holds the records of many users at once, for bulk
evaluation (e.g. re-checking every host member after a role binding change).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING

from scrims.engine.positions import UserPosition
from scrims.engine.verdict import Verdict

if TYPE_CHECKING:
    from scrims.engine.positions import Position

__all__ = ["LedgerSnapshot", "PositionLedger"]


class PositionLedger:
    """One user's position records, keyed by ``id_position``."""

    def __init__(
        self,
        user_id: int,
        records: Iterable[UserPosition] = (),
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.user_id = user_id
        self._clock = clock
        self._records: dict[int, UserPosition] = {}
        self._revoked: set[int] = set()
        for record in records:
            self.add(record)

    def __repr__(self) -> str:
        return f"<PositionLedger user={self.user_id} records={len(self._records)}>"

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[UserPosition]:
        return iter(list(self._records.values()))

    def __contains__(self, id_position: object) -> bool:
        return id_position in self._records

    def add(self, record: UserPosition) -> None:
        """Record *record*; records of other users are ignored."""
        if record.get_field("user_id") != self.user_id:
            return
        self._records[record.id_position] = record
        self._revoked.discard(record.id_position)

    def revoke(self, record: UserPosition) -> None:
        """Drop *record* and deny its position until it is added again."""
        if record.get_field("user_id") != self.user_id:
            return
        self._records.pop(record.id_position, None)
        self._revoked.add(record.id_position)

    def discard(self, id_position: int) -> UserPosition | None:
        return self._records.pop(id_position, None)

    def get(self, position: Position | int) -> UserPosition | None:
        id_position = position if isinstance(position, int) else position.get_field("id_position")
        return self._records.get(id_position)

    def check(self, position: Position | int, now: float | None = None) -> Verdict:
        """GRANTED for an active record, DENIED when revoked, else INDETERMINATE."""
        id_position = position if isinstance(position, int) else position.get_field("id_position")
        if id_position in self._revoked:
            return Verdict.DENIED
        record = self._records.get(id_position)
        if record is None or record.is_expired(self._clock() if now is None else now):
            return Verdict.INDETERMINATE
        return Verdict.GRANTED

    def active(self, now: float | None = None) -> list[UserPosition]:
        now = self._clock() if now is None else now
        return [record for record in self._records.values() if not record.is_expired(now)]


class LedgerSnapshot:
    """Records of many users; users without records get an empty ledger."""

    def __init__(
        self,
        records: Iterable[UserPosition] = (),
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._ledgers: dict[int, PositionLedger] = {}
        for record in records:
            user_id = record.get_field("user_id")
            ledger = self._ledgers.get(user_id)
            if ledger is None:
                ledger = self._ledgers[user_id] = PositionLedger(user_id, clock=clock)
            ledger.add(record)

    def __repr__(self) -> str:
        return f"<LedgerSnapshot users={len(self._ledgers)}>"

    def __len__(self) -> int:
        return len(self._ledgers)

    def for_user(self, user_id: int) -> PositionLedger:
        ledger = self._ledgers.get(user_id)
        if ledger is None:
            return PositionLedger(user_id, clock=self._clock)
        return ledger
