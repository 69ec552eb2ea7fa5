from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .core import Query
from .statements import InsertBuilder, UpdateBuilder


if TYPE_CHECKING:
    from .executor import Executor
    from .schema import Entity

E = TypeVar("E", bound="Entity")


class Repository(Generic[E]):
    """CRUD shortcuts for one entity type over one executor.

    Example:
        >>> devices = Repository(Device, executor)
        >>> device = devices.find(1)
        >>> device.UserId = 2
        >>> devices.update(device)
    """

    __slots__ = ("entity", "executor")

    def __init__(self, entity: type[E], executor: Executor) -> None:
        self.entity = entity
        self.executor = executor

    def query(self) -> Query[E]:
        """A fresh builder bound to this repository's entity and executor."""
        return Query(self.entity, executor=self.executor)

    def fetch_all(self) -> list[E]:
        return self.query().get()

    def find(self, key: Any) -> E | None:
        return self.query().find(key)

    def get_collection_from_one_where(self, column: str, value: Any) -> list[E]:
        return self.query().where(column, value).get()

    def get_one_from_one_where(self, column: str, value: Any) -> E | None:
        return self.query().where(column, value).first()

    def insert(self, entity: E) -> E:
        InsertBuilder(self.executor).save(entity)
        return entity

    def update(self, entity: E) -> E:
        """Write the dirty columns; an entity without a key value is inserted."""
        UpdateBuilder(self.executor).update(entity)
        return entity

    def delete(self, entity: E) -> bool:
        return self.query().delete(entity)

    def bulk_insert(self, entities: Sequence[E]) -> Sequence[E]:
        return InsertBuilder(self.executor).bulk_save(entities)

    def bulk_update(self, entities: Sequence[E]) -> Sequence[E]:
        return UpdateBuilder(self.executor).bulk_update(entities)
