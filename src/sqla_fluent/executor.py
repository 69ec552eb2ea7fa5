from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final, NamedTuple, Protocol, runtime_checkable

import sqlalchemy as sa

from .exceptions import UsageError
from .tools import PLACEHOLDER, schema_of


if TYPE_CHECKING:
    from .config import ExecutorConfig
    from .mapper import Row
    from .schema import Entity

logger = logging.getLogger(__name__)

# A ``:`` that SQLAlchemy's ``text()`` would read as a bind parameter.
_BIND_LIKE: Final[re.Pattern[str]] = re.compile(r"(?<![:\w\\]):(?=\w)")


class ColumnInfo(NamedTuple):
    name: str
    is_primary_key: bool


@runtime_checkable
class Executor(Protocol):
    """What the query builder and statement generators need from a database.

    Implementations own the connection lifecycle; every method is a
    blocking call and database errors propagate unchanged.
    """

    def run(self, sql: str, bindings: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Execute *sql* and return the result rows as mappings (empty for DML)."""
        ...

    def fetch(self, sql: str, bindings: Mapping[str, Any], types: Sequence[type[Entity]]) -> list[Row]:
        """Execute *sql* and decode each flat row into one entity per type."""
        ...

    def insert(self, sql: str, bindings: Mapping[str, Any]) -> Any:
        """Execute an insert and return the generated key (``None`` if none)."""
        ...

    def columns_of(self, table: str) -> list[ColumnInfo]:
        """Live column list of *table*, in table order."""
        ...


def is_sentinel(key: str) -> bool:
    """Tell whether a result column is the table boundary projected by joins."""
    return key.strip("\"'` ") == ":"


def decode_row(keys: Sequence[str], values: Sequence[Any], types: Sequence[type[Entity]]) -> Row:
    """Split one flat result row into an entity per type.

    Columns are assigned in order to the current type until a sentinel
    column is reached, which moves on to the next type.  Column names are
    matched to attributes case-insensitively; unknown columns are ignored.
    Every decoded entity is marked clean.

    Raises:
        UsageError: If the number of sentinel-separated segments does not
            match the number of *types*.
    """
    segments: list[list[tuple[str, Any]]] = [[]]
    for key, value in zip(keys, values):
        if is_sentinel(key):
            segments.append([])
        else:
            segments[-1].append((key, value))

    if len(segments) != len(types):
        raise UsageError(f"Row has {len(segments)} table segment(s) but {len(types)} type(s) were given")

    row: Row = []
    for cls, columns in zip(types, segments):
        schema = schema_of(cls)
        instance = schema.create()
        for name, value in columns:
            attr = schema.attribute_for(name)
            if attr is not None and attr in schema.columns:
                setattr(instance, attr, value)

        row.append(instance.mark_clean())

    return row


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def to_text(sql: str, bindings: Mapping[str, Any]) -> sa.TextClause:
    """Turn ``@name`` placeholders into a SQLAlchemy ``text()`` construct.

    Sequence values become expanding bind parameters, so ``in @ids`` renders
    as ``in (?, ?, ...)``.
    """
    names = set(PLACEHOLDER.findall(sql))
    escaped = _BIND_LIKE.sub(r"\\:", sql)
    clause = sa.text(PLACEHOLDER.sub(lambda m: f":{m.group(1)}", escaped))

    expanding = [
        sa.bindparam(name, expanding=True)
        for name, value in bindings.items()
        if name in names and _is_sequence(value)
    ]
    if expanding:
        clause = clause.bindparams(*expanding)

    return clause


def _parameters(sql: str, bindings: Mapping[str, Any]) -> dict[str, Any]:
    names = set(PLACEHOLDER.findall(sql))
    return {
        name: list(value) if isinstance(value, (set, frozenset)) else value
        for name, value in bindings.items()
        if name in names
    }


class SqlAlchemyExecutor:
    """Blocking ``Executor`` over a SQLAlchemy ``Engine``.

    Each call checks a connection out of the engine's pool inside
    ``engine.begin()``, so every statement runs in its own transaction that
    commits on success.

    Example:
        >>> executor = SqlAlchemyExecutor(sa.create_engine("mysql+pymysql://..."))
        >>> Query(Device, executor=executor).where("UserId", 1).get()
    """

    __slots__ = ("engine",)

    def __init__(self, engine: sa.Engine) -> None:
        self.engine = engine

    @classmethod
    def from_config(cls, config: ExecutorConfig) -> SqlAlchemyExecutor:
        return cls(config.create_engine())

    def _execute(self, sql: str, bindings: Mapping[str, Any]) -> tuple[list[str], list[Sequence[Any]]]:
        logger.debug("Executing %s with bindings %s", sql, list(bindings))

        with self.engine.begin() as conn:
            result = conn.execute(to_text(sql, bindings), _parameters(sql, bindings))
            if not result.returns_rows:
                return [], []

            return list(result.keys()), [tuple(row) for row in result]

    def run(self, sql: str, bindings: Mapping[str, Any]) -> list[dict[str, Any]]:
        keys, rows = self._execute(sql, bindings)
        return [dict(zip(keys, row)) for row in rows]

    def fetch(self, sql: str, bindings: Mapping[str, Any], types: Sequence[type[Entity]]) -> list[Row]:
        keys, rows = self._execute(sql, bindings)
        return [decode_row(keys, row, types) for row in rows]

    def insert(self, sql: str, bindings: Mapping[str, Any]) -> Any:
        logger.debug("Inserting %s with bindings %s", sql, list(bindings))

        with self.engine.begin() as conn:
            result = conn.execute(to_text(sql, bindings), _parameters(sql, bindings))
            return result.lastrowid

    def columns_of(self, table: str) -> list[ColumnInfo]:
        inspector = sa.inspect(self.engine)
        keys = set(inspector.get_pk_constraint(table).get("constrained_columns") or ())

        return [ColumnInfo(column["name"], column["name"] in keys) for column in inspector.get_columns(table)]
