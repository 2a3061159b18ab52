"""Container values shared by the codec and the graph store.

JSON only knows records and arrays. The graph model adds two keyed
containers whose membership follows graph semantics rather than Python
hashing:

- scalars (``None``, booleans, numbers, strings) compare by value;
- every other value (records, sequences, maps, sets, external objects)
  compares by identity.

This lets a ``UniqueSet`` contain itself and a ``UniqueMap`` be keyed by a
plain ``dict``, which built-in ``set``/``dict`` cannot do.
"""

from __future__ import annotations

import reprlib
from collections.abc import Iterable, Iterator, Mapping, MutableMapping, MutableSet
from enum import StrEnum
from typing import Any


class ContainerKind(StrEnum):
    """Kind of an encodable container, valued by its wire tag."""

    PLAIN = ""
    SEQUENCE = "A"
    MAP = "M"
    SET = "S"

    @classmethod
    def parse(cls, name: str) -> ContainerKind:
        """Parse a wire tag (``"A"``) or a long name (``"sequence"``).

        Raises:
            ValueError: If the name is not a known kind.
        """
        if isinstance(name, str):
            kind = _KIND_NAMES.get(name.lower()) if len(name) > 1 else None
            if kind is not None:
                return kind
            for member in cls:
                if member.value == name:
                    return member
        raise ValueError(f"Unknown container kind: {name!r}")

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_NAMES = {
    "plain": ContainerKind.PLAIN,
    "sequence": ContainerKind.SEQUENCE,
    "map": ContainerKind.MAP,
    "set": ContainerKind.SET,
}
_KIND_LABELS = {kind: name for name, kind in _KIND_NAMES.items()}


def _token(value: Any) -> tuple[Any, ...]:
    """Membership token: value equality for scalars, identity otherwise."""
    if value is None:
        return ("null",)
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (int, float)):
        return ("number", value)
    if isinstance(value, str):
        return ("string", value)
    return ("ref", id(value))


class UniqueMap(MutableMapping[Any, Any]):
    """Ordered map with graph key semantics.

    Keys are compared by scalar equality or identity (see module docstring).
    Setting an existing key replaces its value in place, keeping the key's
    position. Two maps are equal only if they are the same object.
    """

    def __init__(self, items: Mapping[Any, Any] | Iterable[tuple[Any, Any]] | None = None):
        # token -> (key, value); holding the key keeps id()-based tokens valid
        self._entries: dict[tuple[Any, ...], tuple[Any, Any]] = {}
        if items is not None:
            pairs = items.items() if isinstance(items, Mapping) else items
            for key, value in pairs:
                self[key] = value

    def __getitem__(self, key: Any) -> Any:
        try:
            return self._entries[_token(key)][1]
        except KeyError:
            raise KeyError(key) from None

    def __setitem__(self, key: Any, value: Any) -> None:
        self._entries[_token(key)] = (key, value)

    def __delitem__(self, key: Any) -> None:
        try:
            del self._entries[_token(key)]
        except KeyError:
            raise KeyError(key) from None

    def __contains__(self, key: object) -> bool:
        return _token(key) in self._entries

    def __iter__(self) -> Iterator[Any]:
        return iter([key for key, _ in self._entries.values()])

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[tuple[Any, Any]]:
        """Return a list of ``(key, value)`` pairs in insertion order."""
        return list(self._entries.values())

    __eq__ = object.__eq__
    __hash__ = object.__hash__

    @reprlib.recursive_repr()
    def __repr__(self) -> str:
        inner = ", ".join(f"{k!r}: {v!r}" for k, v in self._entries.values())
        return f"UniqueMap({{{inner}}})"


class UniqueSet(MutableSet[Any]):
    """Ordered set with graph membership semantics.

    Members are compared by scalar equality or identity, so a set may
    contain itself. Two sets are equal only if they are the same object.
    """

    def __init__(self, items: Iterable[Any] | None = None):
        self._members: dict[tuple[Any, ...], Any] = {}
        if items is not None:
            for item in items:
                self.add(item)

    def __contains__(self, value: object) -> bool:
        return _token(value) in self._members

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._members.values()))

    def __len__(self) -> int:
        return len(self._members)

    def add(self, value: Any) -> None:
        self._members.setdefault(_token(value), value)

    def discard(self, value: Any) -> None:
        self._members.pop(_token(value), None)

    def clear(self) -> None:
        self._members.clear()

    __eq__ = object.__eq__
    __hash__ = object.__hash__

    @reprlib.recursive_repr()
    def __repr__(self) -> str:
        inner = ", ".join(repr(v) for v in self._members.values())
        return f"UniqueSet([{inner}])"


def container_kind(value: Any) -> ContainerKind | None:
    """Classify a value as a container kind, or None for scalars and externals."""
    if isinstance(value, dict):
        return ContainerKind.PLAIN
    if isinstance(value, (list, tuple)):
        return ContainerKind.SEQUENCE
    if isinstance(value, UniqueMap):
        return ContainerKind.MAP
    if isinstance(value, (UniqueSet, set, frozenset)):
        return ContainerKind.SET
    return None


def new_container(kind: ContainerKind) -> Any:
    """Build an empty value of the given kind."""
    if kind is ContainerKind.SEQUENCE:
        return []
    if kind is ContainerKind.MAP:
        return UniqueMap()
    if kind is ContainerKind.SET:
        return UniqueSet()
    return {}


def is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (bool, int, float, str))
