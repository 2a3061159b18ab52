"""Reserved marker keys of the encoded form.

Three keys share one caller-configurable prefix:

- ``<prefix>°`` carries the id of a record on its first occurrence;
- ``<prefix>>`` is the only key of a reference to an already numbered node;
- ``<prefix>þ`` carries a type tag: ``[id, kind]`` as the first element of a
  tagged array, or a plain string on a substituted record.

The encoder builds a fresh output tree and keeps ids in a table of its own,
so markers it emits can never be confused with user data: a user record
that uses one of these keys is rejected instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_PREFIX = "~$£€"

INDEX_SUFFIX = "°"
REFERENCE_SUFFIX = ">"
TYPE_SUFFIX = "þ"


@dataclass(frozen=True)
class Reference:
    """A decoded back-pointer awaiting resolution to the node with this id.

    Placeholders left inside an activated node's fields stay in the live
    graph; the encoder writes them back as ``{prefix>: target}``.
    """

    target: int


def is_ordinal(value: Any) -> bool:
    """True for a non-negative int that is not a bool."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass(frozen=True)
class MarkerKeys:
    """The three marker keys derived from a prefix."""

    prefix: str = DEFAULT_PREFIX
    index: str = field(init=False)
    reference: str = field(init=False)
    type: str = field(init=False)
    reserved: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.prefix, str):
            raise TypeError(f"Marker prefix must be a string, got {type(self.prefix).__name__}")
        object.__setattr__(self, "index", self.prefix + INDEX_SUFFIX)
        object.__setattr__(self, "reference", self.prefix + REFERENCE_SUFFIX)
        object.__setattr__(self, "type", self.prefix + TYPE_SUFFIX)
        object.__setattr__(self, "reserved", frozenset((self.index, self.reference, self.type)))

    def is_reserved(self, key: Any) -> bool:
        return key in self.reserved

    def reference_marker(self, target: int) -> dict[str, int]:
        return {self.reference: target}

    def reference_target(self, value: Any) -> int | None:
        """Return the target id if *value* is a well-formed reference marker."""
        if isinstance(value, dict) and len(value) == 1 and self.reference in value:
            target = value[self.reference]
            if is_ordinal(target):
                return target
        return None

    def type_marker(self, ordinal: int, kind: str) -> dict[str, list[Any]]:
        """First element of a tagged array."""
        return {self.type: [ordinal, kind]}

    def type_marker_payload(self, value: Any) -> Any | None:
        """Return the tag payload if *value* looks like a tagged-array header."""
        if isinstance(value, dict) and len(value) == 1 and self.type in value:
            return value[self.type]
        return None
