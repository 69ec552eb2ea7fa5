from __future__ import annotations

import copy
import dataclasses
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Final, Literal, TypeVar

from .datastructures import Snapshot
from .exceptions import ConfigurationError
from .lazyload import lazy_load
from .registry import Registry, get_registry
from .tools import is_absent, schema_of


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .executor import Executor


E = TypeVar("E", bound="Entity")
RelationKind = Literal["one", "many"]

_META_KEY: Final[str] = "sqla_fluent"
_TARGET_KEY: Final[str] = "sqla_fluent_target"


def primary_key(default: Any = None) -> Any:
    """Declare a dataclass field as (part of) the entity's primary key."""
    return field(default=default, metadata={_META_KEY: "primary_key"})


def one_to_one(target: type[Entity] | str) -> Any:
    """Declare a field holding a single related entity of type *target*."""
    return field(default=None, repr=False, metadata={_META_KEY: "one", _TARGET_KEY: target})


def one_to_many(target: type[Entity] | str) -> Any:
    """Declare a field holding a list of related entities of type *target*.

    The list starts out as ``None`` and is created on first attachment.
    """
    return field(default=None, repr=False, metadata={_META_KEY: "many", _TARGET_KEY: target})


@dataclass(slots=True, frozen=True)
class RelationField:
    name: str
    target: type[Entity] | str
    kind: RelationKind

    @property
    def many(self) -> bool:
        return self.kind == "many"


@dataclass(slots=True, frozen=True)
class Schema:
    """Static description of one entity type.

    Built once by ``@entity`` and looked up by type identity afterwards.  The
    table's live column list is *not* part of the schema: statement
    generators ask the executor for it at call time.
    """

    entity: type[Entity]
    table: str
    columns: tuple[str, ...]
    primary_key_fields: tuple[str, ...]
    relations: tuple[RelationField, ...]
    factory: Callable[[], Entity]
    registry: Registry
    lookup: Mapping[str, str] = field(default_factory=dict)

    @property
    def primary_keys(self) -> tuple[str, ...]:
        """Primary-key attribute names, in declaration order.

        Raises:
            ConfigurationError: If the entity declares no primary key.
        """
        if not self.primary_key_fields:
            raise ConfigurationError(
                f"{self.entity.__name__} is missing a primary key declaration "
                "(use `primary_key()` on at least one field)"
            )

        return self.primary_key_fields

    def attribute_for(self, name: str) -> str | None:
        """Map a column or relation name to the attribute holding it (case-insensitive)."""
        return self.lookup.get(name.lower())

    def relation_target(self, relation: RelationField) -> type[Entity]:
        return self.registry.resolve(relation.target)

    def relation_named(self, name: str) -> RelationField | None:
        return next((r for r in self.relations if r.name == name), None)

    def relations_to(self, target: type[Entity]) -> Sequence[RelationField]:
        """Relation fields of this entity whose target type is exactly *target*."""
        return tuple(r for r in self.relations if self.relation_target(r) is target)

    def create(self) -> Entity:
        return self.factory()


class Entity:
    """Base class for every mapped record type.

    Subclasses are turned into dataclasses and registered by ``@entity``::

        @entity("devices")
        class Device(Entity):
            Nr: int | None = primary_key()
            UserId: int | None = None
            Owner: User | None = one_to_one("User")

    Every field must have a default, so the type can be built with no
    arguments when rows are decoded.
    """

    __schema__: ClassVar[Schema]

    def primary_key(self) -> Any:
        """Return the key value; a tuple for composite keys."""
        keys = schema_of(self).primary_keys
        if len(keys) == 1:
            return getattr(self, keys[0])

        return tuple(getattr(self, key) for key in keys)

    def get_field(self, name: str) -> Any:
        """Read a column or relation by name, ``None`` if the entity has no such field."""
        attr = schema_of(self).attribute_for(name)
        return getattr(self, attr) if attr is not None else None

    def set_field(self, name: str, value: Any) -> None:
        """Write a column or relation by name; unknown names are ignored."""
        attr = schema_of(self).attribute_for(name)
        if attr is not None:
            setattr(self, attr, value)

    def column_values(self) -> dict[str, Any]:
        return {column: getattr(self, column) for column in schema_of(self).columns}

    @property
    def snapshot(self) -> Snapshot | None:
        return self.__dict__.get("_snapshot")

    def mark_clean(self) -> Self:
        """Record the current column values as the load-time state."""
        self.__dict__["_snapshot"] = Snapshot(self.column_values())
        return self

    def clone(self) -> Self:
        return copy.copy(self)

    def is_new(self) -> bool:
        return is_absent(self.primary_key())

    def lazy_load(
        self,
        relation: type[Entity],
        column: str,
        join_column: str,
        executor: Executor,
    ) -> Self:
        """Fetch and attach *relation* for this single entity (see ``lazy_load``)."""
        lazy_load([self], relation, column, join_column, executor)
        return self


def _build_schema(cls: type[Entity], table: str, registry: Registry) -> Schema:
    columns: list[str] = []
    keys: list[str] = []
    relations: list[RelationField] = []

    for f in dataclasses.fields(cls):
        kind = f.metadata.get(_META_KEY)
        if kind in ("one", "many"):
            relations.append(RelationField(name=f.name, target=f.metadata[_TARGET_KEY], kind=kind))
            continue

        columns.append(f.name)
        if kind == "primary_key":
            keys.append(f.name)

    lookup = {name.lower(): name for name in (*columns, *(r.name for r in relations))}

    return Schema(
        entity=cls,
        table=table,
        columns=tuple(columns),
        primary_key_fields=tuple(keys),
        relations=tuple(relations),
        factory=cls,
        registry=registry,
        lookup=lookup,
    )


def entity(table: str, *, registry: Registry | None = None) -> Callable[[type[E]], type[E]]:
    """Class decorator: make *cls* a dataclass entity backed by *table*.

    A missing primary key is not reported here; it raises
    ``ConfigurationError`` the first time key metadata is requested.

    Args:
        table: Unquoted table name.
        registry: Registry to record the schema in. Defaults to the module registry.
    """

    def decorate(cls: type[E]) -> type[E]:
        if not (isinstance(cls, type) and issubclass(cls, Entity)):
            raise TypeError(f"@entity can only decorate Entity subclasses, got {cls!r}")

        if "__dataclass_fields__" not in cls.__dict__:
            cls = dataclass(eq=False)(cls)

        target_registry = registry if registry is not None else get_registry()
        schema = _build_schema(cls, table, target_registry)
        cls.__schema__ = schema
        target_registry.register(schema)

        return cls

    return decorate
