from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

from .datastructures import Bindings
from .exceptions import UsageError
from .lazyload import lazy_load
from .mapper import Mapper
from .tools import PLACEHOLDER, binding_key, get_primary_keys, get_table_name, qualify, quote


if TYPE_CHECKING:
    from .executor import Executor
    from .schema import Entity

E = TypeVar("E", bound="Entity")

logger = logging.getLogger(__name__)

OPERATORS: Final[frozenset[str]] = frozenset({
    "=", "<", ">", "<=", ">=", "<>", "!=", "<=>",
    "like", "like binary", "not like", "ilike",
    "&", "|", "^", "<<", ">>", "in", "not in",
    "rlike", "regexp", "not regexp", "is null", "is not null",
    "~", "~*", "!~", "!~*", "similar to",
    "not similar to", "~~*", "!~~*",
})  # fmt: skip

# Rendering order of the clause slots; a slot with no parts is left out.
CLAUSE_ORDER: Final[tuple[str, ...]] = (
    "select",
    "from",
    "join",
    "where",
    "group by",
    "having",
    "order by",
    "union",
    "limit",
    "offset",
)

# Projected between two tables' ``*`` columns so a flat joined row can be
# split back into one entity per table.
JOIN_SENTINEL: Final[str] = '":"'

_LIST_SEPARATED: Final[frozenset[str]] = frozenset({"group by", "order by"})


def _is_operator(value: Any) -> bool:
    return isinstance(value, str) and value.lower() in OPERATORS


def _as_set(values: Sequence[Any]) -> list[Any]:
    """A single non-string iterable argument is the set itself; otherwise all arguments are."""
    if len(values) == 1 and isinstance(values[0], Iterable) and not isinstance(values[0], (str, bytes)):
        return list(values[0])

    return list(values)


def _render_groups(groups: Sequence[Sequence[str]]) -> str:
    return " or ".join(f"({' and '.join(group)})" for group in groups if group)


@dataclass(slots=True)
class _Clause:
    keyword: str
    parts: list[str] = field(default_factory=list)
    separator: str = ""

    def render(self) -> str:
        if not self.parts:
            return ""

        return f" {self.keyword} {self.separator.join(self.parts)}"


@dataclass(slots=True, frozen=True)
class _LazyLoad:
    relation: type[Entity]
    column: str
    join_column: str


class Query(Generic[E]):
    """Chainable SQL builder for one entity type (or a bare table).

    Every clause method mutates the builder and returns it, so calls chain::

        sql = (
            Query(Device)
            .join("users", "UserId", "Id")
            .where("UserId", 1)
            .or_where("Nr", ">", 10)
            .build_query()
        )

    Values never appear in the SQL text: each one is registered in
    ``bindings`` and referenced as ``@name``.  A builder is meant for one
    request (build, execute, discard) and is not safe to share between
    threads.
    """

    __slots__ = (
        "_bindings",
        "_clauses",
        "_columns",
        "_distinct",
        "_havings",
        "_join_columns",
        "_joins",
        "_lazy_loads",
        "_wheres",
        "entity",
        "executor",
        "table",
    )

    def __init__(
        self,
        entity: type[E] | None = None,
        *,
        table: str | None = None,
        executor: Executor | None = None,
    ) -> None:
        if entity is None and table is None:
            raise UsageError("Query needs an entity type or a table name")

        self.entity = entity
        self.executor = executor
        self.table = quote(table if table is not None else get_table_name(entity))  # type: ignore[arg-type]
        self._bindings = Bindings()
        self._wheres: list[list[str]] = [[]]
        self._havings: list[list[str]] = [[]]
        self._joins: dict[str, list[str]] = {}
        self._columns: list[str] = []
        self._join_columns: list[str] = []
        self._distinct = False
        self._lazy_loads: list[_LazyLoad] = []
        self._clauses: dict[str, _Clause] = {
            name: _Clause(name, separator=", " if name in _LIST_SEPARATED else "")
            for name in CLAUSE_ORDER
        }

    @property
    def bindings(self) -> Bindings:
        """Parameter values registered so far, keyed by placeholder name."""
        return self._bindings

    # ── where / having ───────────────────────────────────────────────

    def _condition(
        self,
        groups: list[list[str]],
        column: str,
        operator: Any,
        value: Any,
        or_: bool,
    ) -> Self:
        if not _is_operator(operator):
            value = operator
            operator = "is null" if value is None else "="

        if or_:
            groups.append([])

        statement = f"{qualify(column, self.table)} {operator}"
        if value is not None:
            key = self._bindings.add(binding_key(column), value)
            statement = f"{statement} @{key}"

        groups[-1].append(statement)
        return self

    def _raw(self, groups: list[list[str]], raw: str, bindings: Sequence[Any]) -> Self:
        pending = list(bindings)
        if len(pending) > len(set(PLACEHOLDER.findall(raw))):
            raise UsageError(f"{len(pending)} binding(s) given for {raw!r}, which has fewer @placeholders")

        # A name repeated in the fragment binds once and keeps one key.
        resolved: dict[str, str] = {}

        def bind(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in resolved:
                if not pending:
                    return match.group(0)
                resolved[name] = self._bindings.add(name, pending.pop(0))

            return f"@{resolved[name]}"

        groups[-1].append(PLACEHOLDER.sub(bind, raw))
        return self

    def where(self, column: str, operator: Any = None, value: Any = None, or_: bool = False) -> Self:
        """Add a where condition.

        When *operator* is not a known SQL operator it is taken as the value
        and the operator becomes ``=`` (``is null`` for ``None``)::

            q.where("UserId", 1)           # `t`.`UserId` = @UserId
            q.where("Nr", ">", 10)         # `t`.`Nr` > @Nr
            q.where("DeletedAt", None)     # `t`.`DeletedAt` is null

        Args:
            column: Column name; ``table.column`` is used as already qualified.
            operator: SQL operator, or the value when the operator is omitted.
            value: Value to bind.
            or_: Open a new OR-group before adding the condition.
        """
        return self._condition(self._wheres, column, operator, value, or_)

    def or_where(self, column: str, operator: Any = None, value: Any = None) -> Self:
        return self.where(column, operator, value, or_=True)

    def where_null(self, *columns: str) -> Self:
        for column in columns:
            self.where(column, "is null")

        return self

    def where_not_null(self, *columns: str) -> Self:
        for column in columns:
            self.where(column, "is not null")

        return self

    def or_where_null(self, *columns: str) -> Self:
        for column in columns:
            self.where(column, "is null", or_=True)

        return self

    def or_where_not_null(self, *columns: str) -> Self:
        for column in columns:
            self.where(column, "is not null", or_=True)

        return self

    def where_in(self, column: str, *values: Any, or_: bool = False) -> Self:
        """Add ``column in @column``; the whole set is bound as one parameter.

        ``where_in("Nr", [1, 2, 3])`` and ``where_in("Nr", 1, 2, 3)`` are equivalent.
        """
        return self.where(column, "in", _as_set(values), or_=or_)

    def or_where_in(self, column: str, *values: Any) -> Self:
        return self.where_in(column, *values, or_=True)

    def where_not_in(self, column: str, *values: Any, or_: bool = False) -> Self:
        return self.where(column, "not in", _as_set(values), or_=or_)

    def or_where_not_in(self, column: str, *values: Any) -> Self:
        return self.where_not_in(column, *values, or_=True)

    def where_raw(self, raw: str, *bindings: Any) -> Self:
        """Add a literal where fragment.

        *bindings* are matched to the ``@name`` placeholders of *raw* from
        left to right.  If a name is already bound, it is renamed (``@Nr`` ->
        ``@Nr_``) in both the fragment and the bindings.
        """
        return self._raw(self._wheres, raw, bindings)

    def or_where_raw(self, raw: str, *bindings: Any) -> Self:
        self._wheres.append([])
        return self.where_raw(raw, *bindings)

    def having(self, column: str, operator: Any = None, value: Any = None, or_: bool = False) -> Self:
        """Add a having condition; same rules as ``where``."""
        return self._condition(self._havings, column, operator, value, or_)

    def or_having(self, column: str, operator: Any = None, value: Any = None) -> Self:
        return self.having(column, operator, value, or_=True)

    def having_raw(self, raw: str, *bindings: Any) -> Self:
        return self._raw(self._havings, raw, bindings)

    # ── joins ────────────────────────────────────────────────────────

    def join(
        self,
        table: str,
        first: str,
        second: str,
        operator: str = "=",
        extra: str = "",
        kind: str = "inner",
    ) -> Self:
        """Join *table* on ``first <operator> second``.

        The trailing word of *table* is its alias (``"users u"``).  *first* is
        qualified with this query's table and *second* with the joined alias.
        A non-operator *operator* is treated as extra raw constraints.

        Each join also adds the boundary sentinel and ``alias.*`` to the
        default projection so joined rows can be decoded table by table.
        """
        words = table.split()
        name, alias = words[0], words[-1]
        target = quote(name) if alias == name else f"{quote(name)} {quote(alias)}"

        self._join_columns.append(f" {JOIN_SENTINEL} , {quote(alias)}.*")

        if not _is_operator(operator):
            extra = f" {operator} {extra}".rstrip()
            operator = "="
        elif extra and not extra.startswith(" "):
            extra = f" {extra}"

        statement = f"{target} on {qualify(first, self.table)} {operator} {qualify(second, quote(alias))}{extra}"
        self._joins.setdefault(kind, []).append(statement)

        return self

    def left_join(self, table: str, first: str, second: str, operator: str = "=", extra: str = "") -> Self:
        return self.join(table, first, second, operator, extra, kind="left")

    def right_join(self, table: str, first: str, second: str, operator: str = "=", extra: str = "") -> Self:
        return self.join(table, first, second, operator, extra, kind="right")

    # ── projection / ordering / paging ───────────────────────────────

    def select(self, *columns: str) -> Self:
        self._columns.extend(qualify(column, self.table) for column in columns)
        return self

    def select_raw(self, raw: str) -> Self:
        """Add a verbatim projection, e.g. ``"count(*) as total"``."""
        self._columns.append(raw)
        return self

    def distinct(self) -> Self:
        self._distinct = True
        return self

    def from_(self, table: str) -> Self:
        self.table = quote(table)
        return self

    def order_by_asc(self, column: str) -> Self:
        self._clauses["order by"].parts.append(f"{qualify(column, self.table)} asc")
        return self

    def order_by_desc(self, column: str) -> Self:
        self._clauses["order by"].parts.append(f"{qualify(column, self.table)} desc")
        return self

    def random_order(self) -> Self:
        self._clauses["order by"].parts.append("rand()")
        return self

    def group_by(self, *columns: str) -> Self:
        self._clauses["group by"].parts.append(", ".join(columns))
        return self

    def limit(self, limit: int, offset: int | None = None) -> Self:
        self._clauses["limit"] = _Clause("limit", [str(limit)])
        if offset is not None:
            self._clauses["offset"] = _Clause("offset", [str(offset)])

        return self

    def union(self, sql: str) -> Self:
        clause = self._clauses["union"]
        clause.separator = " union "
        clause.parts.append(sql)
        return self

    # ── rendering ────────────────────────────────────────────────────

    def build_query(self, select: bool = True) -> str:
        """Render the accumulated clauses into one SQL string.

        Args:
            select: Build the ``select`` and ``from`` slots. ``False`` keeps
                whatever those slots hold (used for update and delete).
        """
        if select:
            self._clauses["from"] = _Clause("from", [self.table])
            self._build_select()

        self._build_join()

        if where := _render_groups(self._wheres):
            self._clauses["where"] = _Clause("where", [where])

        if having := _render_groups(self._havings):
            self._clauses["having"] = _Clause("having", [having])

        return "".join(self._clauses[name].render() for name in CLAUSE_ORDER)

    def _build_select(self) -> None:
        if self._columns:
            parts = [",".join(self._columns)]
        elif self._join_columns:
            parts = [f"{self.table}.*,", ",".join(self._join_columns)]
        else:
            parts = [f"{self.table}.*"]

        self._clauses["select"] = _Clause("select distinct" if self._distinct else "select", parts)

    def _build_join(self) -> None:
        if not self._joins:
            return

        joined = "".join(
            f"{kind} join " + f" {kind} join ".join(statements) + " "
            for kind, statements in self._joins.items()
        )
        # Keyword-less slot: every statement already carries "<kind> join".
        self._clauses["join"] = _Clause("", [joined])

    def build_update_query(self, fields: Mapping[str, Any]) -> str:
        """Render ``update T set `k` = @k, ...`` followed by the where clause."""
        if not fields:
            raise UsageError("update() needs at least one field")

        sets = ", ".join(f"{quote(key)} = @{self._bindings.add(key, value)}" for key, value in fields.items())
        self._clauses["select"] = _Clause("update", [self.table])
        self._clauses["from"] = _Clause("set", [sets])

        return self.build_query(select=False)

    def build_delete_query(self, entity: Entity | None = None) -> str:
        """Render ``delete from T`` with the current where clause.

        Without any where condition the primary key of *entity* is used.

        Raises:
            UsageError: If there is neither a where condition nor an entity.
        """
        if not any(self._wheres):
            if entity is None:
                raise UsageError("Refusing to delete without a where clause or an entity")

            for key in get_primary_keys(type(entity)):
                self.where(key, getattr(entity, key))

        self._clauses["select"] = _Clause("delete from", [self.table])
        self._clauses["from"] = _Clause("")

        return self.build_query(select=False)

    # ── execution ────────────────────────────────────────────────────

    def _require_executor(self) -> Executor:
        if self.executor is None:
            raise UsageError("Query has no executor; pass `executor=` to run statements")

        return self.executor

    def _require_entity(self) -> type[E]:
        if self.entity is None:
            raise UsageError("Query was built for a bare table; pass entity types to get()")

        return self.entity

    def _no_relations(self) -> None:
        self.distinct()
        self._join_columns.clear()

    def with_(self, relation: type[Entity], column: str, join_column: str) -> Self:
        """Lazy-load *relation* onto the results of the next single-type ``get()``."""
        self._lazy_loads.append(_LazyLoad(relation, column, join_column))
        return self

    def get(self, *entities: type[Entity]) -> list[E]:
        """Run the query and return root entities.

        With one type (the default is this query's entity) the projection is
        the root table only.  With several, joined rows are decoded into one
        entity per type and merged into a deduplicated graph rooted at the
        first type.
        """
        types = entities or (self._require_entity(),)
        executor = self._require_executor()

        if len(types) > 1:
            rows = executor.fetch(self.build_query(), self._bindings.as_dict(), types)
            return Mapper().merge(rows)  # type: ignore[return-value]

        self._no_relations()
        rows = executor.fetch(self.build_query(), self._bindings.as_dict(), types)
        result: list[E] = [row[0] for row in rows]  # type: ignore[misc]

        if result:
            for load in self._lazy_loads:
                lazy_load(result, load.relation, load.column, load.join_column, executor)

        return result

    def first(self, *entities: type[Entity]) -> E | None:
        if len(entities) <= 1:
            self._no_relations()
            self.limit(1)

        return next(iter(self.get(*entities)), None)

    def find(self, key: Any) -> E | None:
        """Fetch one entity by its single-column primary key.

        Raises:
            UsageError: If the entity has a composite primary key.
        """
        keys = get_primary_keys(self._require_entity())
        if len(keys) > 1:
            raise UsageError("Do not use find() on an entity with a composite primary key")

        return self.where(keys[0], key).first()

    def get_as_dicts(self) -> list[dict[str, Any]]:
        return self._require_executor().run(self.build_query(), self._bindings.as_dict())

    def update(self, fields: Mapping[str, Any]) -> Self:
        sql = self.build_update_query(fields)
        self._require_executor().run(sql, self._bindings.as_dict())
        return self

    def delete(self, entity: Entity | None = None) -> bool:
        sql = self.build_delete_query(entity)
        self._require_executor().run(sql, self._bindings.as_dict())
        logger.debug("Deleted from %s", self.table)
        return True
