"""
scrims.engine.verdict — Three-valued Decisions
===============================================

Position and role checks can be decided (granted / denied) or undecidable
with the data at hand (guild not cached, member cache not loaded, no roles
configured).  :class:`Verdict` makes the third state explicit and refuses
truthiness so ``if verdict:`` cannot silently treat "unknown" as "no".
"""

from __future__ import annotations

import enum

__all__ = ["Verdict"]


class Verdict(enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"
    INDETERMINATE = "indeterminate"

    def __bool__(self) -> bool:
        raise TypeError(
            "Verdict has no truth value; compare with Verdict.GRANTED / DENIED / INDETERMINATE"
        )

    @classmethod
    def of(cls, value: bool | None) -> Verdict:
        """``True`` → GRANTED, ``False`` → DENIED, ``None`` → INDETERMINATE."""
        if value is None:
            return cls.INDETERMINATE
        return cls.GRANTED if value else cls.DENIED

    @property
    def granted(self) -> bool:
        return self is Verdict.GRANTED

    @property
    def denied(self) -> bool:
        return self is Verdict.DENIED

    @property
    def decided(self) -> bool:
        return self is not Verdict.INDETERMINATE
