"""
scrims.engine.row — Schema-bound Table Rows
============================================

A :class:`TableRow` is a mutable record of one table.  It only ever holds
the columns its :class:`TableSchema` declares; unknown keys passed to
:meth:`TableRow.update` are ignored.  A column that was never assigned is
*unset* (:data:`UNSET`), which is different from ``None`` (SQL ``NULL``).

Identity (:attr:`TableRow.id`) is the unique-key values joined with ``#``
when they are all set, otherwise every column value when they are all set,
otherwise ``None`` (a *partial* row the cache cannot index).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Self

from scrims.constants import ID_SEPARATOR

__all__ = ["UNSET", "TableRow", "TableSchema"]


class _Unset:
    """Sentinel for "no value given" (as opposed to ``None``)."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True, slots=True)
class TableSchema:
    """Column list and uniqueness key of one table."""

    name: str
    columns: tuple[str, ...]
    unique_keys: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, model: Any) -> TableSchema:
        """Derive the schema from a SQLAlchemy declarative model.

        The primary key is used as the unique key.
        """
        table = model.__table__
        return cls(
            name=table.name,
            columns=tuple(col.name for col in table.columns),
            unique_keys=tuple(col.name for col in table.primary_key.columns),
        )


def _values_match(expected: Any, actual: Any) -> bool:
    if isinstance(expected, TableRow):
        expected = expected.to_sql_data()
    if isinstance(expected, Mapping):
        if isinstance(actual, TableRow):
            return actual.matches(expected)
        if isinstance(actual, Mapping):
            return all(
                _values_match(value, actual.get(key, UNSET))
                for key, value in expected.items()
            )
        return False
    return expected == actual


class TableRow:
    """Base class of every cached row.

    Subclasses set :attr:`schema` (usually ``TableSchema.from_model(...)``)
    and may add properties that resolve related rows through :attr:`client`.
    """

    schema: ClassVar[TableSchema]

    def __init__(self, data: Mapping[str, Any] | TableRow | None = None, *, client: Any = None) -> None:
        self._client = client
        self._expiration: float | None = None
        if data:
            self.update(data)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"

    # -------------------------------------------------------------------
    # Schema access
    # -------------------------------------------------------------------
    @property
    def client(self) -> Any:
        """The owning database context (may be ``None`` for detached rows)."""
        return self._client

    @property
    def bot(self) -> Any:
        return getattr(self._client, "bot", None)

    @property
    def columns(self) -> tuple[str, ...]:
        return self.schema.columns

    @property
    def unique_keys(self) -> tuple[str, ...]:
        return self.schema.unique_keys

    def get_field(self, key: str) -> Any:
        """Return the value of column *key*, or :data:`UNSET`."""
        return self.__dict__.get(key, UNSET)

    def is_set(self, key: str) -> bool:
        return key in self.__dict__ and key in self.schema.columns

    @property
    def id(self) -> str | None:
        for keys in (self.unique_keys, self.columns):
            if keys and all(self.is_set(key) for key in keys):
                return ID_SEPARATOR.join(str(self.__dict__[key]) for key in keys)
        return None

    @property
    def partial(self) -> bool:
        return any(not self.is_set(key) for key in self.columns)

    # -------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------
    def update(self, data: Mapping[str, Any] | TableRow) -> Self:
        """Assign the declared columns found in *data*; ignore everything else."""
        items = data.to_sql_data() if isinstance(data, TableRow) else data
        for key, value in items.items():
            if key in self.schema.columns and value is not UNSET:
                setattr(self, key, value)
        return self

    def clone(self) -> Self:
        """Detached copy built from the column values (cache timer not copied)."""
        return type(self)(self.to_sql_data(), client=self._client)

    def destroy(self) -> None:
        """Cleanup hook called when the cache evicts this row."""

    # -------------------------------------------------------------------
    # Cache expiry
    # -------------------------------------------------------------------
    def is_cache_expired(self, now: float | None = None) -> bool:
        """True iff an expiration is set and *now* has reached it.

        Without *now* the cache timer is not consulted and this returns
        False; only a subclass's own expiry (``UserPosition.expires_at``) can
        still report a row as expired.
        """
        return self._expiration is not None and now is not None and self._expiration <= now

    def set_cache_expiration(self, expiration: float | None) -> None:
        self._expiration = expiration

    # -------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------
    def matches(self, selector: Mapping[str, Any]) -> bool:
        """Deep match of *selector* against this row.

        Column keys compare against the stored values; other keys compare
        against attributes (e.g. related-row properties), recursing into
        nested mappings.  Private (``_``) keys are ignored.
        """
        for key, expected in selector.items():
            if key.startswith("_"):
                continue
            if key in self.schema.columns:
                actual = self.get_field(key)
            else:
                actual = getattr(self, key, UNSET)
            if not _values_match(expected, actual):
                return False
        return True

    def exactly_equals(self, other: Mapping[str, Any] | TableRow) -> bool:
        """Every public field *other* specifies equals the value stored here."""
        if isinstance(other, TableRow):
            return all(
                _values_match(other.get_field(key), self.get_field(key))
                for key in self.schema.columns
                if other.is_set(key)
            )
        return self.matches(other)

    def equals(self, other: Mapping[str, Any] | TableRow) -> bool:
        """Unique-key comparison when both sides know the key, else exact."""
        if isinstance(other, TableRow):
            get_other = other.get_field
        else:
            def get_other(key: str) -> Any:
                return other.get(key, UNSET)

        if self.unique_keys and all(
            get_other(key) is not UNSET and self.get_field(key) is not UNSET
            for key in self.unique_keys
        ):
            return all(self.get_field(key) == get_other(key) for key in self.unique_keys)
        return self.exactly_equals(other)

    # -------------------------------------------------------------------
    # Projection
    # -------------------------------------------------------------------
    def to_sql_data(self) -> dict[str, Any]:
        """The set columns, in schema order."""
        return {key: self.__dict__[key] for key in self.schema.columns if key in self.__dict__}

    def to_selector(self) -> dict[str, Any]:
        """Unique keys if they are all known, else every set column."""
        data = self.to_sql_data()
        if self.unique_keys and all(key in data for key in self.unique_keys):
            return {key: data[key] for key in self.unique_keys}
        return data
