"""Substitution hooks for values that must never be inlined.

At encode time ``substitute(value)`` is offered every record and every
external (non-JSON) value once, on its first visit. It may return:

- ``None`` or the value itself: no substitution;
- a ``dict``: the value is replaced by that record, with an empty type tag;
- a ``Replacement``: the value is replaced by its fields, tagged with its
  ``type_tag``.

At decode time ``activate(record, type_tag)`` is called once per substituted
record. A non-``None`` result becomes the materialized node and is treated as
opaque: references inside it are not resolved. Returning ``None`` keeps the
stripped record.

Hooks are expected to be deterministic and inverse of each other; only then
is ``serialize(deserialize(text))`` guaranteed to equal ``text``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from refgraph.codec.markers import DEFAULT_PREFIX
from refgraph.errors import UnknownExternal

Substitute = Callable[[Any], Any]
Activate = Callable[[dict[str, Any], str], Any]


@dataclass(frozen=True)
class Replacement:
    """Record that stands in for an external value in the encoded form."""

    fields: dict[str, Any]
    type_tag: str = ""


@runtime_checkable
class Codec(Protocol):
    """A substitute/activate pair supplied as one object."""

    def substitute(self, value: Any) -> Any:
        """Return a replacement for *value*, or None to encode it as itself."""
        ...

    def activate(self, record: dict[str, Any], type_tag: str) -> Any:
        """Return the live value for a substituted *record*, or None."""
        ...


@dataclass
class CodecOptions:
    """Options shared by the encoding and decoding side.

    Attributes:
        prefix: Marker key prefix.
        codec: Optional substitute/activate pair.
    """

    prefix: str = DEFAULT_PREFIX
    codec: Codec | None = None

    @property
    def substitute(self) -> Substitute | None:
        return self.codec.substitute if self.codec is not None else None

    @property
    def activate(self) -> Activate | None:
        return self.codec.activate if self.codec is not None else None


@dataclass
class ExternalRegistry:
    """Codec that maps registered external objects to stable names.

    Registered objects are matched by identity and encoded as
    ``{"name": <name>}`` records; decoding hands back the very same objects.

    Example::

        registry = ExternalRegistry()
        registry.register("db", connection)
        text = serialize(graph, options=CodecOptions(codec=registry))
    """

    name_field: str = "name"
    _by_name: dict[Any, tuple[Any, str]] = field(default_factory=dict, repr=False)
    _by_identity: dict[int, tuple[Any, Any, str]] = field(default_factory=dict, repr=False)

    def register(self, name: Any, obj: Any, type_tag: str = "") -> None:
        """Register *obj* under *name*, replacing any previous registration."""
        previous = self._by_name.get(name)
        if previous is not None:
            self._by_identity.pop(id(previous[0]), None)
        self._by_name[name] = (obj, type_tag)
        self._by_identity[id(obj)] = (name, obj, type_tag)

    def __contains__(self, obj: object) -> bool:
        entry = self._by_identity.get(id(obj))
        return entry is not None and entry[1] is obj

    def __len__(self) -> int:
        return len(self._by_name)

    def substitute(self, value: Any) -> Replacement | None:
        entry = self._by_identity.get(id(value))
        if entry is None or entry[1] is not value:
            return None
        name, _, type_tag = entry
        return Replacement({self.name_field: name}, type_tag)

    def activate(self, record: dict[str, Any], type_tag: str) -> Any:
        name = record.get(self.name_field)
        try:
            obj, registered_tag = self._by_name[name]
        except (KeyError, TypeError):
            raise UnknownExternal(name, type_tag) from None
        if registered_tag != type_tag:
            raise UnknownExternal(name, type_tag)
        return obj
