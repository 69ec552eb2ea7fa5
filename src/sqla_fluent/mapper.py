from __future__ import annotations

from collections.abc import Iterable, MutableSequence, Sequence
from typing import TYPE_CHECKING, Any, TypeAlias

from .tools import is_absent, schema_of


if TYPE_CHECKING:
    from .schema import Entity, RelationField


# One decoded result row: an entity per table, root table first, then joins in join order.
Row: TypeAlias = "MutableSequence[Entity | None]"


class Mapper:
    """Fold decoded joined rows into a deduplicated entity graph.

    For every row, each slot is matched against every other slot: when the
    other slot's type is the target of one of the slot's relation fields,
    it is attached there.  Matching every pair (not only root-to-slot) lets
    grandchildren find their parent in the same row.

    Attachment keeps one instance per primary key: a relation already
    present in the graph replaces the fresh copy in the row, so deeper
    relations land on the instance that is actually reachable from the
    root.

    The relation lookup cache lives on the instance and is cleared when
    ``merge`` returns, so a ``Mapper`` should not be shared between threads.

    Example:
        >>> rows = executor.fetch(sql, bindings, (Device, User, Notification))
        >>> devices = Mapper().merge(rows)
    """

    __slots__ = ("_relation_cache",)

    def __init__(self) -> None:
        self._relation_cache: dict[type[Entity], tuple[tuple[RelationField, type[Entity]], ...]] = {}

    def merge(self, rows: Iterable[Sequence[Entity | None]]) -> list[Entity]:
        """Merge *rows* and return the distinct roots in first-seen order.

        Args:
            rows: Decoded rows, each with the root entity in slot 0.

        Returns:
            One root entity per distinct root primary key.
        """
        roots: dict[Any, Entity] = {}

        try:
            for decoded in rows:
                row: Row = list(decoded)
                root = row[0]
                if root is None:
                    continue

                key = root.primary_key()
                if key in roots:
                    row[0] = roots[key]
                else:
                    roots[key] = root

                self.map_relations(row)
        finally:
            self.clear_cache()

        return list(roots.values())

    def map_relations(self, row: Row) -> Row:
        """Attach every slot of *row* to the relation fields of every other slot.

        Slots are replaced in place by the canonical (already attached)
        instance when one exists.
        """
        for i in range(len(row)):
            owner = row[i]
            if owner is None:
                continue

            relations = self._relations(type(owner))
            if not relations:
                continue

            for y in range(len(row)):
                candidate = row[y]
                if y == i or candidate is None:
                    continue

                for relation, target in relations:
                    if type(candidate) is not target:
                        continue

                    # An outer join with no match decodes to an empty instance.
                    if is_absent(candidate.primary_key()):
                        continue

                    if relation.many:
                        candidate = self._one_to_many(owner, relation, candidate)
                    else:
                        candidate = self._one_to_one(owner, relation, candidate)

                    row[y] = candidate
                    # A slot fills only the first relation field of its type.
                    break

        return row

    def _relations(self, entity: type[Entity]) -> tuple[tuple[RelationField, type[Entity]], ...]:
        cached = self._relation_cache.get(entity)
        if cached is None:
            schema = schema_of(entity)
            cached = tuple((relation, schema.relation_target(relation)) for relation in schema.relations)
            self._relation_cache[entity] = cached

        return cached

    @staticmethod
    def _one_to_one(owner: Entity, relation: RelationField, candidate: Entity) -> Entity:
        current = getattr(owner, relation.name)
        if current is not None and current.primary_key() == candidate.primary_key():
            return current

        setattr(owner, relation.name, candidate)
        return candidate

    @staticmethod
    def _one_to_many(owner: Entity, relation: RelationField, candidate: Entity) -> Entity:
        collection = getattr(owner, relation.name)
        if collection is None:
            collection = []
            setattr(owner, relation.name, collection)

        key = candidate.primary_key()
        for existing in collection:
            if existing.primary_key() == key:
                return existing

        collection.append(candidate)
        return candidate

    def clear_cache(self) -> None:
        self._relation_cache.clear()
