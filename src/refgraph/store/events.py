"""Pydantic models for mutation events and event batches.

On the wire an event is a positional array ``[code, *args]`` and a batch is
``{"transaction": N, "events": [...]}``. Codes may be given in their short
form (``"N"``) or their long form (``"New-Object"``).
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from refgraph.errors import MalformedEvent
from refgraph.values import ContainerKind


class EventCode(StrEnum):
    """Short wire codes of mutation events."""

    NEW_OBJECT = "N"
    DISPOSED = "D"
    NEW_PROPERTY = "P"
    PROPERTY_CHANGED = "C"
    LIST_INSERT = "I"
    COLLECTION_CLEAR = "CL"
    LIST_REMOVE_AT = "R"
    COLLECTION_REMOVE_KEY = "K"
    MAP_SET = "M"
    SET_ADD = "A"

    @classmethod
    def parse(cls, code: Any) -> EventCode:
        """Parse a short code or a long name.

        Raises:
            ValueError: If the code is unknown.
        """
        if isinstance(code, str):
            if code in _LONG_NAMES:
                return _LONG_NAMES[code]
            for member in cls:
                if member.value == code:
                    return member
        raise ValueError(f"Unknown event code: {code!r}")


_LONG_NAMES = {
    "New-Object": EventCode.NEW_OBJECT,
    "Disposed": EventCode.DISPOSED,
    "New-Property": EventCode.NEW_PROPERTY,
    "Property-Changed": EventCode.PROPERTY_CHANGED,
    "List-Insert": EventCode.LIST_INSERT,
    "Collection-Clear": EventCode.COLLECTION_CLEAR,
    "List-Remove-At": EventCode.LIST_REMOVE_AT,
    "Collection-Remove-Key": EventCode.COLLECTION_REMOVE_KEY,
    "Map-Set": EventCode.MAP_SET,
    "Set-Add": EventCode.SET_ADD,
}

ObjectId = Annotated[int, Field(ge=0, strict=True)]


class Event(BaseModel):
    """Base class of all mutation events.

    Subclasses declare their wire ``code`` and the positional ``args`` order.
    """

    code: ClassVar[EventCode]
    args: ClassVar[tuple[str, ...]]

    def to_wire(self) -> list[Any]:
        """Render as ``[code, *args]``."""
        return [self.code.value, *(getattr(self, name) for name in self.args)]


class NewObject(Event):
    """Create an empty object of the given kind at an unused id."""

    code: ClassVar[EventCode] = EventCode.NEW_OBJECT
    args: ClassVar[tuple[str, ...]] = ("object_id", "kind")

    object_id: ObjectId
    kind: ContainerKind

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: Any) -> ContainerKind:
        if isinstance(value, ContainerKind):
            return value
        return ContainerKind.parse(value)

    def to_wire(self) -> list[Any]:
        return [self.code.value, self.object_id, self.kind.value]


class Disposed(Event):
    """Tombstone a live object."""

    code: ClassVar[EventCode] = EventCode.DISPOSED
    args: ClassVar[tuple[str, ...]] = ("object_id",)

    object_id: ObjectId


class NewProperty(Event):
    """Append a property name at the next index."""

    code: ClassVar[EventCode] = EventCode.NEW_PROPERTY
    args: ClassVar[tuple[str, ...]] = ("name", "index")

    name: str = Field(strict=True)
    index: int = Field(ge=0, strict=True)


class PropertyChanged(Event):
    """Set a field of a record (or an entry of a map) by property index."""

    code: ClassVar[EventCode] = EventCode.PROPERTY_CHANGED
    args: ClassVar[tuple[str, ...]] = ("object_id", "property_index", "value")

    object_id: ObjectId
    property_index: int = Field(ge=0, strict=True)
    value: Any = None


class ListInsert(Event):
    """Insert into a sequence; position == length appends."""

    code: ClassVar[EventCode] = EventCode.LIST_INSERT
    args: ClassVar[tuple[str, ...]] = ("object_id", "position", "value")

    object_id: ObjectId
    position: int = Field(ge=0, strict=True)
    value: Any = None


class CollectionClear(Event):
    """Empty a sequence, map or set in place."""

    code: ClassVar[EventCode] = EventCode.COLLECTION_CLEAR
    args: ClassVar[tuple[str, ...]] = ("object_id",)

    object_id: ObjectId


class ListRemoveAt(Event):
    """Remove the element at a position of a sequence."""

    code: ClassVar[EventCode] = EventCode.LIST_REMOVE_AT
    args: ClassVar[tuple[str, ...]] = ("object_id", "position")

    object_id: ObjectId
    position: int = Field(ge=0, strict=True)


class CollectionRemoveKey(Event):
    """Remove a map entry by key, or a set member by value."""

    code: ClassVar[EventCode] = EventCode.COLLECTION_REMOVE_KEY
    args: ClassVar[tuple[str, ...]] = ("object_id", "key")

    object_id: ObjectId
    key: Any = None


class MapSet(Event):
    """Set a map entry (the key may be any value)."""

    code: ClassVar[EventCode] = EventCode.MAP_SET
    args: ClassVar[tuple[str, ...]] = ("object_id", "key", "value")

    object_id: ObjectId
    key: Any = None
    value: Any = None


class SetAdd(Event):
    """Add a member to a set."""

    code: ClassVar[EventCode] = EventCode.SET_ADD
    args: ClassVar[tuple[str, ...]] = ("object_id", "value")

    object_id: ObjectId
    value: Any = None


EVENT_TYPES: dict[EventCode, type[Event]] = {
    cls.code: cls
    for cls in (
        NewObject,
        Disposed,
        NewProperty,
        PropertyChanged,
        ListInsert,
        CollectionClear,
        ListRemoveAt,
        CollectionRemoveKey,
        MapSet,
        SetAdd,
    )
}


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


def parse_event(raw: Any) -> Event:
    """Parse a wire event ``[code, *args]`` into its model.

    Raises:
        MalformedEvent: Unknown code, wrong arity or wrong argument types.
    """
    if isinstance(raw, Event):
        return raw
    if not isinstance(raw, (list, tuple)) or not raw:
        raise MalformedEvent(raw, "an event must be a non-empty array")
    try:
        code = EventCode.parse(raw[0])
    except ValueError as e:
        raise MalformedEvent(raw, str(e)) from None

    model = EVENT_TYPES[code]
    params = raw[1:]
    if len(params) != len(model.args):
        raise MalformedEvent(
            raw, f"'{code.value}' takes {len(model.args)} argument(s), got {len(params)}"
        )
    try:
        return model(**dict(zip(model.args, params, strict=True)))
    except ValidationError as e:
        raise MalformedEvent(raw, _describe(e)) from e


class EventBatch(BaseModel):
    """Ordered events that advance a store to ``transaction``."""

    transaction: int = Field(ge=0, strict=True)
    events: list[Event] = Field(default_factory=list)

    @field_validator("events", mode="before")
    @classmethod
    def _parse_events(cls, value: Any) -> list[Event]:
        if not isinstance(value, (list, tuple)):
            raise ValueError("events must be an array")
        return [parse_event(raw) for raw in value]

    @classmethod
    def coerce(cls, data: Any) -> EventBatch:
        """Build a batch from a model, a dict or JSON text.

        Raises:
            MalformedEvent: If the batch cannot be parsed.
        """
        if isinstance(data, EventBatch):
            return data
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise MalformedEvent(data, f"invalid JSON: {e}") from e
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedEvent(data, _describe(e)) from e

    def to_wire(self) -> dict[str, Any]:
        return {"transaction": self.transaction, "events": [e.to_wire() for e in self.events]}
