"""
tests/test_ledger.py — Position Ledger & Verdict Unit Tests
============================================================
"""

from __future__ import annotations

import pytest

from scrims.engine.ledger import LedgerSnapshot, PositionLedger
from scrims.engine.positions import Position, UserPosition
from scrims.engine.verdict import Verdict


def _record(user_id: int, id_position: int, expires_at: int | None = None) -> UserPosition:
    return UserPosition({
        "user_id": user_id,
        "id_position": id_position,
        "given_at": 0,
        "expires_at": expires_at,
        "executor_id": None,
    })


class TestVerdict:
    def test_no_truth_value(self):
        with pytest.raises(TypeError):
            bool(Verdict.GRANTED)
        with pytest.raises(TypeError):
            if Verdict.INDETERMINATE:
                pass

    @pytest.mark.parametrize(
        "value, expected",
        [(True, Verdict.GRANTED), (False, Verdict.DENIED), (None, Verdict.INDETERMINATE)],
    )
    def test_of(self, value, expected):
        assert Verdict.of(value) is expected

    def test_properties(self):
        assert Verdict.GRANTED.granted and Verdict.GRANTED.decided
        assert Verdict.DENIED.denied and Verdict.DENIED.decided
        assert not Verdict.INDETERMINATE.decided


class TestPositionLedger:
    def test_no_record_is_indeterminate(self, clock):
        ledger = PositionLedger(1, clock=clock)
        assert ledger.check(5) is Verdict.INDETERMINATE

    def test_active_record_grants(self, clock):
        ledger = PositionLedger(1, [_record(1, 5, expires_at=int(clock.now) + 60)], clock=clock)
        assert ledger.check(5) is Verdict.GRANTED

    def test_lapsed_record_is_indeterminate(self, clock):
        ledger = PositionLedger(1, [_record(1, 5, expires_at=int(clock.now))], clock=clock)
        assert ledger.check(5) is Verdict.INDETERMINATE
        assert ledger.check(5) is PositionLedger(1, clock=clock).check(5)

    def test_revoke_denies(self, clock):
        record = _record(1, 5)
        ledger = PositionLedger(1, [record], clock=clock)
        ledger.revoke(record)
        assert 5 not in ledger
        assert ledger.check(5) is Verdict.DENIED

    def test_revoke_without_record(self, clock):
        ledger = PositionLedger(1, clock=clock)
        ledger.revoke(_record(1, 5))
        assert ledger.check(5) is Verdict.DENIED
        assert ledger.check(6) is Verdict.INDETERMINATE

    def test_add_clears_revocation(self, clock):
        ledger = PositionLedger(1, clock=clock)
        ledger.revoke(_record(1, 5))
        ledger.add(_record(1, 5))
        assert ledger.check(5) is Verdict.GRANTED

    def test_revoke_other_user_ignored(self, clock):
        ledger = PositionLedger(1, [_record(1, 5)], clock=clock)
        ledger.revoke(_record(2, 5))
        assert ledger.check(5) is Verdict.GRANTED

    def test_permanent_record(self, clock):
        ledger = PositionLedger(1, [_record(1, 5)], clock=clock)
        clock.advance(10**9)
        assert ledger.check(5) is Verdict.GRANTED

    def test_check_by_position_row(self, clock):
        ledger = PositionLedger(1, [_record(1, 5)], clock=clock)
        assert ledger.check(Position({"id_position": 5, "name": "x"})) is Verdict.GRANTED

    def test_other_users_ignored(self, clock):
        ledger = PositionLedger(1, [_record(2, 5)], clock=clock)
        assert len(ledger) == 0
        assert 5 not in ledger

    def test_active_and_discard(self, clock):
        now = int(clock.now)
        ledger = PositionLedger(1, [_record(1, 5), _record(1, 6, expires_at=now - 1)], clock=clock)
        assert [record.id_position for record in ledger.active()] == [5]
        assert ledger.discard(5) is not None
        assert ledger.check(5) is Verdict.INDETERMINATE


class TestLedgerSnapshot:
    def test_groups_by_user(self, clock):
        snapshot = LedgerSnapshot([_record(1, 5), _record(2, 6), _record(1, 7)], clock=clock)
        assert len(snapshot) == 2
        assert len(snapshot.for_user(1)) == 2
        assert snapshot.for_user(2).check(6) is Verdict.GRANTED

    def test_unknown_user_gets_empty_ledger(self, clock):
        ledger = LedgerSnapshot([], clock=clock).for_user(42)
        assert ledger.user_id == 42
        assert len(ledger) == 0
