from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, final

from .exceptions import ConfigurationError


if TYPE_CHECKING:
    from .schema import Entity, Schema


@final
class Registry:
    """Lookup table from entity types to their schema descriptors.

    Populated once per entity type by the ``@entity`` decorator at class
    creation time.  Relation targets declared as strings (forward references)
    are resolved here by class name, so two entities may point at each other
    regardless of definition order.
    """

    __slots__ = ("_by_name", "_schemas")

    def __init__(self) -> None:
        self._schemas: dict[type[Entity], Schema] = {}
        self._by_name: dict[str, type[Entity]] = {}

    def register(self, schema: Schema) -> None:
        """Register *schema* under its entity type and the type's class name."""
        self._schemas[schema.entity] = schema
        self._by_name[schema.entity.__name__] = schema.entity

    def get(self, entity: type[Entity]) -> Schema | None:
        """Get the schema of *entity*, returning ``None`` if it is not registered."""
        return self._schemas.get(entity)

    def __getitem__(self, entity: type[Entity]) -> Schema:
        """Look up the schema of *entity*, raising ``KeyError`` if not found."""
        return self._schemas[entity]

    def __contains__(self, entity: object) -> bool:
        return entity in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    @property
    def schemas(self) -> Mapping[type[Entity], Schema]:
        """The underlying entity-to-schema mapping (read-only view)."""
        return dict(self._schemas)

    def resolve(self, target: type[Entity] | str) -> type[Entity]:
        """Turn a relation target (class or class name) into the entity class.

        Raises:
            ConfigurationError: If *target* names a class that was never registered.
        """
        if not isinstance(target, str):
            return target

        try:
            return self._by_name[target]
        except KeyError:
            raise ConfigurationError(
                f"Relation target {target!r} is not a registered entity. "
                f"Known: {sorted(self._by_name)}"
            ) from None

    def clear(self) -> None:
        """Forget every registered entity (primarily for tests)."""
        self._schemas.clear()
        self._by_name.clear()


default_registry = Registry()


def get_registry() -> Registry:
    """Return the registry used when ``@entity`` is not given one explicitly."""
    return default_registry
