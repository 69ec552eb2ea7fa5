from __future__ import annotations

import logging
from collections.abc import Sequence
from numbers import Number
from typing import TYPE_CHECKING, Any, Final

from .exceptions import UsageError
from .tools import get_primary_keys, get_table_name, quote, schema_of


if TYPE_CHECKING:
    from .executor import ColumnInfo, Executor
    from .schema import Entity

logger = logging.getLogger(__name__)

# Maintained by the database; never written by insert or update.
TIMESTAMP_COLUMNS: Final[frozenset[str]] = frozenset({"createdat", "updatedat"})


def fields_without_primary_key(columns: Sequence[ColumnInfo]) -> list[str]:
    """Names of the writable columns: not a primary key and not a timestamp."""
    return [
        column.name
        for column in columns
        if not column.is_primary_key and column.name.lower() not in TIMESTAMP_COLUMNS
    ]


def primary_key_fields(columns: Sequence[ColumnInfo]) -> list[str]:
    return [column.name for column in columns if column.is_primary_key]


def literal(value: Any) -> str:
    """Render *value* as an inline SQL literal for the bulk statements.

    No escaping is done: callers must only pass trusted values.

    Example:
        >>> literal(1), literal("test"), literal(None), literal(True)
        ('"1"', '"test"', 'NULL', '1')
    """
    if value is None:
        return "NULL"

    if isinstance(value, bool):
        return "1" if value else "0"

    return f'"{value}"'


def _key_literal(value: Any) -> str:
    if isinstance(value, Number) and not isinstance(value, bool):
        return str(value)

    return f'"{value}"'


def _same_type(entities: Sequence[Entity]) -> type[Entity]:
    if not entities:
        raise UsageError("Bulk statements need at least one entity")

    cls = type(entities[0])
    if any(type(e) is not cls for e in entities):
        raise UsageError("Bulk statements need entities of a single type")

    return cls


def _bulk_values(entities: Sequence[Entity], columns: Sequence[str]) -> str:
    return ", ".join(
        "(" + ", ".join(literal(entity.get_field(column)) for column in columns) + ")"
        for entity in entities
    )


class InsertBuilder:
    """Generate and run ``insert`` statements for entities.

    The column list comes from the live table (``executor.columns_of``), so
    columns that exist on the entity but not in the table are never written.
    """

    __slots__ = ("executor",)

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def build_save_query(self, table: str) -> str:
        """``insert into T (`c`, ...) values (@c, ...)`` over the writable columns of *table*."""
        columns = fields_without_primary_key(self.executor.columns_of(table))
        names = ", ".join(quote(column) for column in columns)
        placeholders = ", ".join(f"@{column}" for column in columns)

        return f"insert into {quote(table)} ({names}) values ({placeholders})"

    def save(self, entity: Entity) -> Any:
        """Insert *entity* and return the generated key.

        For a single-column primary key the generated value is written back
        onto the entity.  The entity is marked clean afterwards.
        """
        table = get_table_name(type(entity))
        columns = fields_without_primary_key(self.executor.columns_of(table))
        sql = self.build_save_query(table)

        key = self.executor.insert(sql, {column: entity.get_field(column) for column in columns})

        keys = get_primary_keys(type(entity))
        if len(keys) == 1 and key is not None:
            setattr(entity, keys[0], key)

        entity.mark_clean()
        return key

    def build_bulk_save_query(self, entities: Sequence[Entity]) -> str:
        """One multi-row insert with the values inlined as literals.

        Raises:
            UsageError: If *entities* is empty or mixes entity types.
        """
        cls = _same_type(entities)
        schema = schema_of(cls)
        table = schema.table
        columns = [
            column
            for column in fields_without_primary_key(self.executor.columns_of(table))
            if schema.attribute_for(column) is not None
        ]
        names = ", ".join(quote(column) for column in columns)

        return f"insert into {quote(table)} ({names}) values {_bulk_values(entities, columns)}"

    def bulk_save(self, entities: Sequence[Entity]) -> Sequence[Entity]:
        if entities:
            self.executor.run(self.build_bulk_save_query(entities), {})

        return entities


class UpdateBuilder:
    """Generate and run ``update`` statements for entities.

    Only dirty columns are written: those whose value differs from the
    entity's load-time snapshot.  An entity without a snapshot is treated as
    entirely dirty.
    """

    __slots__ = ("executor",)

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def dirty_fields(self, entity: Entity, columns: Sequence[str]) -> list[str]:
        """The subset of *columns* whose value differs from the entity's snapshot."""
        schema = schema_of(entity)
        mapped = [column for column in columns if schema.attribute_for(column) is not None]

        snapshot = entity.snapshot
        if snapshot is None:
            return mapped

        changed = set(snapshot.changed(entity.column_values()))
        return [column for column in mapped if schema.attribute_for(column) in changed]

    def _render(self, entity: Entity) -> tuple[str, list[str]]:
        table = get_table_name(type(entity))
        dirty = self.dirty_fields(entity, fields_without_primary_key(self.executor.columns_of(table)))
        if not dirty:
            return "", dirty

        sets = ", ".join(f"{quote(column)} = @{column}" for column in dirty)
        where = " and ".join(
            f"{quote(key)} = {_key_literal(getattr(entity, key))}" for key in get_primary_keys(type(entity))
        )

        return f"update {quote(table)} set {sets} where {where}", dirty

    def build_update_query(self, entity: Entity) -> str:
        """Render the update for *entity*, or ``""`` when nothing changed.

        Primary-key values are written into the ``where`` part as literals.
        """
        return self._render(entity)[0]

    def update(self, entity: Entity) -> Entity:
        """Write the dirty columns of *entity*; new entities are inserted instead."""
        if entity.is_new():
            logger.info("%s has no primary key value; inserting instead of updating", type(entity).__name__)
            InsertBuilder(self.executor).save(entity)
            return entity

        sql, dirty = self._render(entity)
        if not sql:
            logger.debug("Nothing to update for %s %r", type(entity).__name__, entity.primary_key())
            return entity

        self.executor.run(sql, {column: entity.get_field(column) for column in dirty})
        entity.mark_clean()

        return entity

    def build_bulk_update_query(self, entities: Sequence[Entity]) -> str:
        """Upsert every entity with ``insert ... on duplicate key update``.

        All live columns are inserted; every non-key column is updated from
        ``VALUES()`` when the key already exists.
        """
        cls = _same_type(entities)
        schema = schema_of(cls)
        table = schema.table
        live = self.executor.columns_of(table)
        keys = {name.lower() for name in primary_key_fields(live)}
        columns = [column.name for column in live if schema.attribute_for(column.name) is not None]

        names = ", ".join(quote(column) for column in columns)
        updates = ", ".join(
            f"{quote(column)} = VALUES({quote(column)})" for column in columns if column.lower() not in keys
        )

        return (
            f"insert into {quote(table)} ({names}) values {_bulk_values(entities, columns)} "
            f"on duplicate key update {updates}"
        )

    def bulk_update(self, entities: Sequence[Entity]) -> Sequence[Entity]:
        if entities:
            self.executor.run(self.build_bulk_update_query(entities), {})

        return entities
