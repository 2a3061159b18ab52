"""Codec and graph store error types.

Every detectable inconsistency is raised to the caller: the codec's value is
an exact round trip, and the store's value is an exact replay, so nothing is
guessed around or silently repaired.

Each error carries its structured fields and can format itself as a short
markdown diagnostic with ``to_feedback()`` (used by the CLI).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Display limit for payload excerpts in messages
_MAX_EXCERPT = 80


def _excerpt(value: Any) -> str:
    text = repr(value)
    if len(text) > _MAX_EXCERPT:
        return text[: _MAX_EXCERPT - 3] + "..."
    return text


class RefgraphError(Exception):
    """Base class for all refgraph errors."""

    def to_feedback(self) -> str:
        """Format the error as a short markdown diagnostic."""
        lines = [f"## {type(self).__name__}", "", f"**Problem**: {self}"]
        hint = self._hint()
        if hint:
            lines.extend(["", f"**Fix**: {hint}"])
        return "\n".join(lines)

    def _hint(self) -> str:
        return ""


class CodecError(RefgraphError):
    """Raised by the encoder or the decoder."""


class StoreError(RefgraphError):
    """Raised by the graph store while loading a snapshot or applying events."""


# -- Codec ---------------------------------------------------------------------


@dataclass
class MarkerConflict(CodecError):
    """A record in the input already uses a reserved marker key.

    Attributes:
        key: The reserved key found in user data.
        path: Location of the offending record (``$.a.b[0]`` notation).
    """

    key: str
    path: str = "$"

    def __post_init__(self) -> None:
        super().__init__(f"Conflicting marker key '{self.key}' found at {self.path}")

    def _hint(self) -> str:
        return "Rename the field, or encode with a different marker prefix."


@dataclass
class InvalidTypeTag(CodecError):
    """A substituted record declares a type tag that is not a string."""

    tag: Any
    path: str = "$"

    def __post_init__(self) -> None:
        super().__init__(f"Type tag must be a string, got {_excerpt(self.tag)} at {self.path}")


@dataclass
class UnknownContainerType(CodecError):
    """A tagged array declares a container kind other than A, M or S."""

    tag: Any
    path: str = "$"

    def __post_init__(self) -> None:
        super().__init__(f"Unknown container type {_excerpt(self.tag)} at {self.path}")


@dataclass
class DanglingReference(CodecError):
    """A reference marker points at an id with no materialized node."""

    target: int
    path: str = "$"

    def __post_init__(self) -> None:
        super().__init__(f"Reference to unknown node #{self.target} at {self.path}")

    def _hint(self) -> str:
        return "The document is truncated or corrupt, or was encoded with another prefix."


@dataclass
class DuplicateIndex(CodecError):
    """Two nodes in one document declare the same id."""

    index: int
    path: str = "$"

    def __post_init__(self) -> None:
        super().__init__(f"Node #{self.index} declared twice (second at {self.path})")


@dataclass
class UnsupportedValue(CodecError):
    """A value cannot be represented in the encoded form."""

    type_name: str
    path: str = "$"
    reason: str = ""

    def __post_init__(self) -> None:
        msg = f"Cannot encode value of type '{self.type_name}' at {self.path}"
        if self.reason:
            msg += f": {self.reason}"
        super().__init__(msg)

    def _hint(self) -> str:
        return "Supply a substitute hook that replaces external objects with records."


@dataclass
class MalformedInput(CodecError):
    """The encoded input is not well formed."""

    reason: str
    path: str = "$"

    def __post_init__(self) -> None:
        super().__init__(f"Malformed input at {self.path}: {self.reason}")


@dataclass
class UnknownExternal(CodecError):
    """An activation names an external object that was never registered."""

    name: Any
    type_tag: str = ""

    def __post_init__(self) -> None:
        msg = f"No external object registered as {_excerpt(self.name)}"
        if self.type_tag:
            msg += f" (type '{self.type_tag}')"
        super().__init__(msg)


# -- Store ---------------------------------------------------------------------


@dataclass
class OutOfOrderTransaction(StoreError):
    """An event batch does not declare exactly the next transaction number."""

    expected: int
    actual: Any

    def __post_init__(self) -> None:
        super().__init__(
            f"Out of order transaction: expected {self.expected}, got {_excerpt(self.actual)}"
        )

    def _hint(self) -> str:
        return "Apply the missing batches first, or reload from a fresh snapshot."


@dataclass
class InvalidSnapshot(StoreError):
    """A store snapshot document is missing data or is inconsistent."""

    reason: str

    def __post_init__(self) -> None:
        super().__init__(f"Invalid snapshot: {self.reason}")


@dataclass
class MalformedEvent(StoreError):
    """An event (or a batch) cannot be parsed."""

    payload: Any
    reason: str

    def __post_init__(self) -> None:
        super().__init__(f"Malformed event {_excerpt(self.payload)}: {self.reason}")


@dataclass
class UnknownObject(StoreError):
    """An event targets an id that is unused or disposed."""

    object_id: Any
    disposed: bool = False

    def __post_init__(self) -> None:
        state = "disposed" if self.disposed else "unknown"
        super().__init__(f"Object #{self.object_id} is {state}")


@dataclass
class ObjectExists(StoreError):
    """A new object is declared at an id that is (or was) in use."""

    object_id: int
    disposed: bool = False

    def __post_init__(self) -> None:
        if self.disposed:
            msg = f"Object #{self.object_id} was disposed; ids are not reused"
        else:
            msg = f"Object #{self.object_id} already exists"
        super().__init__(msg)


@dataclass
class WrongObjectKind(StoreError):
    """An event targets an object of the wrong container kind."""

    object_id: int
    expected: str
    actual: str

    def __post_init__(self) -> None:
        super().__init__(
            f"Object #{self.object_id} is a {self.actual}, expected {self.expected}"
        )


@dataclass
class PositionOutOfRange(StoreError):
    """A list position is outside the sequence bounds."""

    object_id: int
    position: int
    length: int

    def __post_init__(self) -> None:
        super().__init__(
            f"Position {self.position} out of range for object #{self.object_id} "
            f"(length {self.length})"
        )


@dataclass
class PropertyIndexMismatch(StoreError):
    """A new property is not declared at the next sequential index."""

    name: str
    expected: int
    actual: int

    def __post_init__(self) -> None:
        super().__init__(
            f"Property '{self.name}' declared at index {self.actual}, expected {self.expected}"
        )


@dataclass
class UnknownProperty(StoreError):
    """A property index has not been declared."""

    index: int
    available: int = 0

    def __post_init__(self) -> None:
        super().__init__(
            f"Property index {self.index} is not declared ({self.available} known)"
        )


@dataclass
class MissingEntry(StoreError):
    """A key or member to remove is not in the map or set."""

    object_id: int
    key: Any

    def __post_init__(self) -> None:
        super().__init__(f"Object #{self.object_id} has no entry {_excerpt(self.key)}")
