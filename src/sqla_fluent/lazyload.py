from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from typing import TYPE_CHECKING, TypeVar

from .exceptions import UsageError
from .tools import schema_of


if TYPE_CHECKING:
    from .executor import Executor
    from .schema import Entity

R = TypeVar("R", bound="Entity")

logger = logging.getLogger(__name__)


def lazy_load(
    parents: Sequence[Entity],
    relation: type[R],
    column: str,
    join_column: str,
    executor: Executor,
) -> list[R]:
    """Fetch *relation* rows for already loaded *parents* with one ``IN`` query.

    The parents' *column* values are collected and matched against the
    relation's *join_column*; each fetched relation is attached to the first
    parent holding the same value.  One-to-many relations are appended
    without a duplicate check, so loading the same relation twice attaches
    every child twice.

    Args:
        parents: Loaded entities of one type.
        relation: Entity type to fetch; the parents' type must declare a
            relation field targeting it.
        column: Column on the parents (e.g. ``"Id"``).
        join_column: Column on *relation* holding the parent's value
            (e.g. ``"UserId"``).
        executor: Executor used for the relation query.

    Returns:
        The fetched relation entities (empty when nothing was queried).

    Raises:
        UsageError: If the parents' type has no relation field for *relation*.

    Example:
        >>> users = Query(User, executor=ex).get()
        >>> lazy_load(users, Device, "Id", "UserId", ex)
    """
    if not parents:
        return []

    schema = schema_of(parents[0])
    fields = schema.relations_to(relation)
    if not fields:
        raise UsageError(f"{schema.entity.__name__} has no relation field of type {relation.__name__}")

    if len(fields) > 1:
        warnings.warn(
            f"{schema.entity.__name__} declares several relation fields of type {relation.__name__}; "
            f"lazy loading into {fields[0].name!r}",
            stacklevel=2,
        )

    target = fields[0]
    values = list(dict.fromkeys(value for parent in parents if (value := parent.get_field(column)) is not None))
    if not values:
        logger.debug("Lazy load of %s skipped: no %s values on parents", relation.__name__, column)
        return []

    from .core import Query

    loaded: list[R] = Query(relation, executor=executor).where_in(join_column, values).get()

    for item in loaded:
        foreign = item.get_field(join_column)
        parent = next((p for p in parents if p.get_field(column) == foreign), None)
        if parent is None:
            continue

        if target.many:
            collection = getattr(parent, target.name)
            if collection is None:
                collection = []
                setattr(parent, target.name, collection)
            collection.append(item)
        else:
            setattr(parent, target.name, item)

    return loaded
