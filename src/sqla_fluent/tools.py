from __future__ import annotations

import re
from collections.abc import Callable
from functools import lru_cache
from numbers import Number
from typing import TYPE_CHECKING, Any, Final, TypeVar

from .exceptions import UsageError


if TYPE_CHECKING:
    from .schema import Entity, Schema

E = TypeVar("E", bound="Entity")

QUOTE: Final[str] = "`"
# ``@name`` parameter placeholders; ``@@var`` and ``user@host`` are not placeholders.
PLACEHOLDER: Final[re.Pattern[str]] = re.compile(r"(?<![\w@])@(\w+)")


def quote(name: str) -> str:
    """Wrap a table or column name in backticks.

    Example:
        >>> quote("devices")
        '`devices`'
    """
    return f"{QUOTE}{name}{QUOTE}"


def qualify(column: str, table: str) -> str:
    """Quote *column* and qualify it with the (already quoted) *table*.

    A column that already carries a qualifier (``users.id``) is left pointing
    at that qualifier; every dotted segment is quoted on its own.

    Example:
        >>> qualify("UserId", "`devices`")
        '`devices`.`UserId`'
        >>> qualify("notifications.Send", "`devices`")
        '`notifications`.`Send`'
    """
    if "." not in column:
        return f"{table}.{quote(column)}"

    return ".".join(quote(part) for part in column.split("."))


def binding_key(column: str) -> str:
    """Derive a parameter name from a column reference (``a.b`` -> ``a_b``)."""
    return column.replace(".", "_")


def is_absent(value: Any) -> bool:
    """Tell whether a primary-key value means "no row".

    ``None`` and numeric zero are absent.  A composite key (tuple) is absent
    only when every component is.
    """
    if value is None:
        return True

    if isinstance(value, tuple):
        return all(is_absent(part) for part in value)

    if isinstance(value, bool):
        return False

    if isinstance(value, Number):
        return value == 0

    if isinstance(value, str) and value.isdigit():
        return int(value) == 0

    return False


def schema_of(entity: type[E] | E) -> Schema:
    """Return the schema descriptor of an entity class or instance.

    Raises:
        UsageError: If *entity* was not declared with ``@entity``.
    """
    cls = entity if isinstance(entity, type) else type(entity)
    schema = cls.__dict__.get("__schema__")
    if schema is None:
        raise UsageError(f"{cls.__name__} is not a registered entity (missing @entity)")

    return schema


@lru_cache
def _get_table_name(entity: type[E]) -> str:
    """Return the table name for *entity* (cached)."""
    result = schema_of(entity).table
    if not result:
        raise ValueError(f"Cannot determine tablename for {entity}")

    return result


@lru_cache
def _get_primary_keys(entity: type[E]) -> tuple[str, ...]:
    """Return the primary-key attribute names for *entity* (cached)."""
    return schema_of(entity).primary_keys


def get_table_name(entity: type[E]) -> str:
    """Get the table name for an entity class.

    Args:
        entity: Class decorated with ``@entity``.

    Returns:
        The unquoted table name.

    Raises:
        UsageError: If *entity* is not an entity class.
    """
    return _get_table_name(entity)


def get_primary_keys(entity: type[E]) -> tuple[str, ...]:
    """Get the primary-key attribute names for an entity class.

    Raises:
        ConfigurationError: If the entity declares no primary key.
    """
    return _get_primary_keys(entity)


_CACHED: Final[tuple[Callable[..., Any], ...]] = (_get_table_name, _get_primary_keys)


def cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for the schema lookup caches."""
    return {fn.__name__: fn.cache_info() for fn in _CACHED}  # type: ignore[attr-defined]


def cache_clear() -> None:
    """Clear the schema lookup caches."""
    for fn in _CACHED:
        fn.cache_clear()  # type: ignore[attr-defined]
