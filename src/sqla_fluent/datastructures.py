from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any


class Snapshot(Mapping[str, Any]):
    """Immutable copy of an entity's column values.

    Taken when an entity is loaded from the database or explicitly marked
    clean, and only ever read when computing the dirty fields of an update.

    Example:
        >>> snap = Snapshot({"name": "alice", "active": True})
        >>> snap["name"]
        'alice'
        >>> snap.changed({"name": "bob", "active": True})
        ('name',)
    """

    __slots__ = ("_values",)

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._values: dict[str, Any] = dict(*args, **kwargs)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._values!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Snapshot):
            return self._values == other._values

        if isinstance(other, dict):
            return self._values == other

        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def changed(self, current: Mapping[str, Any]) -> tuple[str, ...]:
        """Return the keys of *current* whose value differs from the snapshot.

        Keys missing from the snapshot always count as changed.
        """
        return tuple(
            key
            for key, value in current.items()
            if key not in self._values or self._values[key] != value
        )


class Bindings(Mapping[str, Any]):
    """Ordered parameter-name to value registry with collision-safe keys.

    A name is never overwritten: registering an existing name appends ``_``
    until the name is unique, and the final name is returned so the caller
    can write the matching ``@name`` placeholder.

    Example:
        >>> b = Bindings()
        >>> b.add("UserId", 1)
        'UserId'
        >>> b.add("UserId", 2)
        'UserId_'
        >>> dict(b)
        {'UserId': 1, 'UserId_': 2}
    """

    __slots__ = ("_params",)

    def __init__(self) -> None:
        self._params: dict[str, Any] = {}

    def __getitem__(self, key: str) -> Any:
        return self._params[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._params!r}>"

    def unique_key(self, key: str) -> str:
        while key in self._params:
            key = f"{key}_"

        return key

    def add(self, key: str, value: Any) -> str:
        """Register *value* under *key* (disambiguated) and return the key used."""
        key = self.unique_key(key)
        self._params[key] = value

        return key

    def as_dict(self) -> dict[str, Any]:
        return dict(self._params)
