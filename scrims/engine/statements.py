"""
scrims.engine.statements — SQL Statement Composer
==================================================

Turns nested condition mappings into parameterised SQL fragments.  No value
is ever concatenated into the SQL text: every literal is appended to a
shared ``params`` list and replaced by a ``:pN`` placeholder, where ``N`` is
its 1-based position in that list.  Pass the same list through a whole
statement build so the numbering stays consistent.

Condition keys
--------------
* ``"name"``               column of the parent alias (``"this"."name"``)
* ``{"rel": {"col": v}}``  column of a joined alias (``"rel"."col"``)
* ``"!name"``              negated comparison (``NOT "this"."name" = :p1``)
* ``"(sub query)"``        raw expression, used verbatim as the left side

Condition values
----------------
* literals are parameterised
* ``None`` renders ``IS NULL`` (or ``NULL`` in set / insert / call lists)
* :data:`~scrims.engine.row.UNSET` renders ``FALSE`` in a where clause and is
  skipped everywhere else, so a filter on an unknown value matches nothing
* a list / tuple / set renders ``IN (...)``; an empty one renders ``FALSE``
* :class:`Raw` is inserted as-is (already-safe SQL such as ``NOW()``)

Usage::

    params = []
    where = SQLStatementCreator.OR({"name": "mod"}, {"level": None}).to_where_statement(params)
    # '("this"."name" = :p1) OR ("this"."level" IS NULL)', params == ["mod"]
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from scrims.engine.row import UNSET, TableRow

__all__ = ["NEGATION_PREFIX", "Raw", "SQLStatementCreator", "quote_identifier"]

NEGATION_PREFIX = "!"

_SUB_QUERY = re.compile(r"^\(.*\)$", re.DOTALL)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


class Raw:
    """A pre-escaped SQL fragment that must not be parameterised."""

    __slots__ = ("sql",)

    def __init__(self, sql: str) -> None:
        self.sql = sql

    def __repr__(self) -> str:
        return f"Raw({self.sql!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Raw) and other.sql == self.sql

    def __hash__(self) -> int:
        return hash(("raw", self.sql))


def quote_identifier(name: str) -> str:
    """Double-quote a SQL identifier, rejecting names that could break out."""
    if not name or '"' in name or "\x00" in name:
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def _parameterize(value: Any, params: list[Any]) -> str:
    if isinstance(value, Raw):
        return value.sql
    if value is None:
        return "NULL"
    params.append(value)
    return f":p{len(params)}"


class SQLStatementCreator:
    """A group of condition mappings (or nested creators) joined by a separator."""

    def __init__(
        self,
        *objs: Any,
        operator: str = "=",
        separator: str = "AND",
        parent: str | None = "this",
    ) -> None:
        self.operator = operator
        self.separator = separator
        self.parent = parent
        if parent is not None:
            quote_identifier(parent)
        self.objs: list[dict[str, Any] | SQLStatementCreator] = []
        self.add(*objs)

    def __repr__(self) -> str:
        return (
            f"<SQLStatementCreator {self.separator} op={self.operator!r} "
            f"parent={self.parent!r} groups={len(self.objs)}>"
        )

    # -------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------
    @classmethod
    def AND(cls, *objs: Any) -> SQLStatementCreator:
        return cls(*objs, separator="AND")

    @classmethod
    def OR(cls, *objs: Any) -> SQLStatementCreator:
        return cls(*objs, separator="OR")

    @classmethod
    def LIKE(cls, *objs: Any) -> SQLStatementCreator:
        return cls(*objs, operator="LIKE")

    @classmethod
    def ILIKE(cls, *objs: Any) -> SQLStatementCreator:
        """Case-insensitive ``LIKE`` (PostgreSQL)."""
        return cls(*objs, operator="ILIKE")

    # -------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------
    def add(self, *objs: Any) -> SQLStatementCreator:
        """Append condition groups.  Lists are flattened, rows become their data."""
        for obj in self._expand(objs):
            if isinstance(obj, SQLStatementCreator):
                self.objs.append(obj)
            elif isinstance(obj, TableRow):
                self.objs.append(obj.to_sql_data())
            elif isinstance(obj, Mapping):
                self.objs.append(dict(obj))
            else:
                raise TypeError(f"Unsupported condition group: {obj!r}")
        return self

    @staticmethod
    def _expand(objs: Iterable[Any]) -> Iterable[Any]:
        for obj in objs:
            if obj is None:
                continue
            if isinstance(obj, (list, tuple)):
                yield from SQLStatementCreator._expand(obj)
            else:
                yield obj

    def set_parent(self, parent: str | None) -> SQLStatementCreator:
        """Change the alias top-level keys are qualified with (recursively)."""
        if parent is not None:
            quote_identifier(parent)
        self.parent = parent
        for obj in self.objs:
            if isinstance(obj, SQLStatementCreator):
                obj.set_parent(parent)
        return self

    def merge(self) -> dict[str, Any]:
        """All groups folded into one mapping; later groups win."""
        merged: dict[str, Any] = {}
        for obj in self.objs:
            merged.update(obj.merge() if isinstance(obj, SQLStatementCreator) else obj)
        return merged

    # -------------------------------------------------------------------
    # WHERE
    # -------------------------------------------------------------------
    def flatten(self, obj: Mapping[str, Any], prev_parent: str | None = None) -> dict[str, Any]:
        """Resolve nested mappings into qualified, quoted left-hand sides."""
        flat: dict[str, Any] = {}
        for key, value in obj.items():
            if _SUB_QUERY.match(key):
                flat[key] = value
                continue

            prefix = ""
            if key.startswith(NEGATION_PREFIX):
                prefix = "NOT "
                key = key[len(NEGATION_PREFIX):]

            ident = quote_identifier(key)
            if prev_parent:
                ident = f"{prev_parent}.{ident}"

            if isinstance(value, Mapping):
                flat.update(self.flatten(value, f"{prefix}{ident}"))
                continue

            if self.parent and not prev_parent:
                ident = f"{quote_identifier(self.parent)}.{ident}"
            flat[f"{prefix}{ident}"] = value
        return flat

    def _where_clause(self, obj: Mapping[str, Any], params: list[Any]) -> str:
        parts: list[str] = []
        for key, value in self.flatten(obj).items():
            if value is UNSET:
                parts.append("FALSE")
            elif value is None:
                parts.append(f"{key} IS NULL")
            elif isinstance(value, _SEQUENCE_TYPES):
                if not value:
                    # NOT x IN () holds for every row
                    parts.append("TRUE" if key.startswith("NOT ") else "FALSE")
                    continue
                placeholders = ", ".join(_parameterize(v, params) for v in value)
                parts.append(f"{key} IN ({placeholders})")
            else:
                parts.append(f"{key} {self.operator} {_parameterize(value, params)}")
        return " AND ".join(parts)

    def to_where_statement(self, params: list[Any]) -> str:
        """Render every group and join them with the separator.

        Returns an empty string when there are no conditions at all.
        """
        sql = ""
        for obj in self.objs:
            if isinstance(obj, SQLStatementCreator):
                new_sql = obj.to_where_statement(params)
            else:
                new_sql = self._where_clause(obj, params)
            if not new_sql or not sql:
                sql = sql or new_sql
                continue
            sql = f"({sql}) {self.separator} ({new_sql})"
        return sql

    # -------------------------------------------------------------------
    # SET / INSERT / function calls
    # -------------------------------------------------------------------
    def _projected(self, params: list[Any]) -> list[tuple[str, str]]:
        return [
            (quote_identifier(key), _parameterize(value, params))
            for key, value in self.merge().items()
            if value is not UNSET
        ]

    def to_set_statement(self, params: list[Any]) -> str:
        return ", ".join(f"{key} = {value}" for key, value in self._projected(params))

    def to_insert_statement(self, params: list[Any]) -> str:
        pairs = self._projected(params)
        if not pairs:
            return ""
        columns = ", ".join(key for key, _ in pairs)
        values = ", ".join(value for _, value in pairs)
        return f"({columns}) VALUES ({values})"

    def to_func_params(self, params: list[Any]) -> str:
        """Named-notation call arguments: ``"name" => :p1``."""
        return ", ".join(f"{key} => {value}" for key, value in self._projected(params))

    def to_func_args(self, params: list[Any]) -> str:
        """Positional call arguments in merge order."""
        return ", ".join(value for _, value in self._projected(params))
