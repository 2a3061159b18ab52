"""Event-sourced object graph store.

An ``ObjectGraphStore`` holds a materialized graph as an id-addressed object
table, an append-only property-name table and a transaction number. It is
seeded from a decoded snapshot and advanced by event batches that refer to
objects and properties purely by index.

Batches are all-or-nothing: every applied event pushes an undo step on a
journal, and a failing batch is rolled back to the state it started from
(same object identities) before the error propagates. Named savepoints reuse
the same journal to roll back across batches.

The store is single-writer: callers serialize ``apply`` calls.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from refgraph.codec.decoder import deserialize
from refgraph.codec.encoder import serialize
from refgraph.codec.markers import DEFAULT_PREFIX, MarkerKeys
from refgraph.errors import (
    InvalidSnapshot,
    MissingEntry,
    ObjectExists,
    OutOfOrderTransaction,
    PositionOutOfRange,
    PropertyIndexMismatch,
    UnknownObject,
    UnknownProperty,
    WrongObjectKind,
)
from refgraph.observability.logging import get_logger
from refgraph.store.events import (
    CollectionClear,
    CollectionRemoveKey,
    Disposed,
    Event,
    EventBatch,
    ListInsert,
    ListRemoveAt,
    MapSet,
    NewObject,
    NewProperty,
    PropertyChanged,
    SetAdd,
)
from refgraph.values import (
    ContainerKind,
    UniqueMap,
    UniqueSet,
    container_kind,
    new_container,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from refgraph.codec.hooks import Activate, Substitute

log = get_logger(__name__)

# Snapshot document keys
TRANSACTION_KEY = "transaction"
PROPERTIES_KEY = "properties"
OBJECTS_KEY = "objects"

# Container wrapper records found in snapshot object tables
CONTAINER_INDEX_KEY = "$container-index"
CONTAINER_CONTENTS_KEY = "$container-contents"

_MISSING = object()

UndoStep = Callable[[], None]


def _kind_label(value: Any) -> str:
    kind = container_kind(value)
    return kind.label if kind is not None else type(value).__name__


def _is_wrapper(value: Any) -> bool:
    return isinstance(value, dict) and value.keys() == {CONTAINER_INDEX_KEY, CONTAINER_CONTENTS_KEY}


def lift_containers(objects: Iterable[Any]) -> dict[int, Any]:
    """Flatten container wrappers of a decoded object table.

    A table entry ``{"$container-index": i, "$container-contents": c}`` is
    replaced by ``c``, and every field, element, map key or value and set
    member that points at a wrapper is rewritten to point at ``objects[i]``.

    Returns:
        The lifted table as an ``{id: object}`` dict.

    Raises:
        InvalidSnapshot: A wrapper declares an index other than its own
            position, or a field points at a wrapper outside the table.
    """
    table: dict[int, Any] = {}
    for position, entry in enumerate(objects):
        if _is_wrapper(entry):
            index = entry[CONTAINER_INDEX_KEY]
            if index != position:
                raise InvalidSnapshot(
                    f"container wrapper at position {position} declares index {index!r}"
                )
            entry = entry[CONTAINER_CONTENTS_KEY]
        table[position] = entry

    def lift(value: Any) -> Any:
        if not _is_wrapper(value):
            return value
        index = value[CONTAINER_INDEX_KEY]
        if isinstance(index, bool) or not isinstance(index, int) or index not in table:
            raise InvalidSnapshot(f"container wrapper points outside the table: {index!r}")
        return table[index]

    for obj in table.values():
        if isinstance(obj, dict):
            for key, item in obj.items():
                obj[key] = lift(item)
        elif isinstance(obj, list):
            obj[:] = [lift(item) for item in obj]
        elif isinstance(obj, UniqueMap):
            entries = obj.entries()
            obj.clear()
            for key, item in entries:
                obj[lift(key)] = lift(item)
        elif isinstance(obj, UniqueSet):
            members = list(obj)
            obj.clear()
            for member in members:
                obj.add(lift(member))
    return table


class ObjectGraphStore:
    """Materialized object graph advanced by ordered event batches.

    Attributes:
        transaction_number: Number of the last applied batch.
        property_names: Declared property names, index = declaration order.
        objects: Read-only view of the object table (``None`` = disposed).
    """

    def __init__(
        self,
        transaction_number: int = 0,
        property_names: Iterable[str] = (),
        objects: Mapping[int, Any] | Iterable[Any] = (),
        *,
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        self._transaction_number = transaction_number
        self._property_names: list[str] = list(property_names)
        if isinstance(objects, Mapping):
            self._objects: dict[int, Any] = dict(objects)
        else:
            self._objects = dict(enumerate(objects))
        self._keys = MarkerKeys(prefix)
        self._journal: list[UndoStep] = []
        self._savepoints: dict[str, tuple[int, int]] = {}

    # -------------------------------------------------------------------------
    # Loading and saving
    # -------------------------------------------------------------------------

    @classmethod
    def from_snapshot(
        cls,
        data: Any,
        *,
        prefix: str = DEFAULT_PREFIX,
        activate: Activate | None = None,
    ) -> ObjectGraphStore:
        """Create a store from an encoded snapshot document.

        The document is ``{"transaction": N, "properties": [...],
        "objects": [...]}``, as text or as a parsed tree, encoded with the
        graph codec.

        Raises:
            InvalidSnapshot: Missing or ill-typed keys, or bad container wrappers.
            CodecError: The document cannot be decoded.
        """
        document = deserialize(data, prefix=prefix, activate=activate)
        if not isinstance(document, dict):
            raise InvalidSnapshot("snapshot must be a record")
        missing = [k for k in (TRANSACTION_KEY, PROPERTIES_KEY, OBJECTS_KEY) if k not in document]
        if missing:
            raise InvalidSnapshot(f"missing key(s): {', '.join(missing)}")

        transaction = document[TRANSACTION_KEY]
        if isinstance(transaction, bool) or not isinstance(transaction, int) or transaction < 0:
            raise InvalidSnapshot(f"transaction must be a non-negative integer: {transaction!r}")
        properties = document[PROPERTIES_KEY]
        if not isinstance(properties, list) or not all(isinstance(p, str) for p in properties):
            raise InvalidSnapshot("properties must be an array of strings")
        objects = document[OBJECTS_KEY]
        if not isinstance(objects, list):
            raise InvalidSnapshot("objects must be an array")

        store = cls(transaction, properties, lift_containers(objects), prefix=prefix)
        log.debug(
            "store_loaded",
            transaction=transaction,
            properties=len(properties),
            objects=len(store),
        )
        return store

    def to_snapshot(self, *, substitute: Substitute | None = None) -> str:
        """Encode the store state as a snapshot document.

        Unused and disposed ids both encode as ``null``.
        """
        size = max(self._objects, default=-1) + 1
        document = {
            TRANSACTION_KEY: self._transaction_number,
            PROPERTIES_KEY: list(self._property_names),
            OBJECTS_KEY: [self._objects.get(i) for i in range(size)],
        }
        return serialize(document, prefix=self._keys.prefix, substitute=substitute)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def transaction_number(self) -> int:
        return self._transaction_number

    @property
    def property_names(self) -> tuple[str, ...]:
        return tuple(self._property_names)

    @property
    def objects(self) -> Mapping[int, Any]:
        return MappingProxyType(self._objects)

    @property
    def prefix(self) -> str:
        return self._keys.prefix

    def get(self, object_id: int) -> Any:
        """Return the live object at *object_id*.

        Raises:
            UnknownObject: If the id is unused or disposed.
        """
        return self._live(object_id)

    def is_disposed(self, object_id: int) -> bool:
        return object_id in self._objects and self._objects[object_id] is None

    def __len__(self) -> int:
        """Number of live objects."""
        return sum(1 for obj in self._objects.values() if obj is not None)

    def __repr__(self) -> str:
        return (
            f"ObjectGraphStore(transaction={self._transaction_number}, "
            f"properties={len(self._property_names)}, objects={len(self)})"
        )

    # -------------------------------------------------------------------------
    # Applying events
    # -------------------------------------------------------------------------

    def apply(self, batch: EventBatch | dict[str, Any] | str | bytes) -> int:
        """Apply one event batch.

        Args:
            batch: An ``EventBatch``, its dict form or its JSON text.

        Returns:
            The new transaction number.

        Raises:
            OutOfOrderTransaction: The batch is not for ``transaction_number + 1``.
            MalformedEvent: The batch cannot be parsed.
            StoreError: An event's precondition failed. The batch is rolled
                back and the transaction number is not advanced.
        """
        batch = EventBatch.coerce(batch)
        expected = self._transaction_number + 1
        if batch.transaction != expected:
            raise OutOfOrderTransaction(expected=expected, actual=batch.transaction)

        mark = len(self._journal)
        for position, event in enumerate(batch.events):
            try:
                self._apply_event(event)
            except Exception as e:
                self._undo_to(mark)
                log.warning(
                    "batch_rolled_back",
                    transaction=batch.transaction,
                    event_index=position,
                    failed_event=event.to_wire(),
                    error=str(e),
                )
                raise

        previous = self._transaction_number
        self._transaction_number = batch.transaction
        self._record(lambda: setattr(self, "_transaction_number", previous))
        if not self._savepoints:
            self._journal.clear()

        log.debug("batch_applied", transaction=batch.transaction, events=len(batch.events))
        return self._transaction_number

    def apply_all(self, batches: Iterable[EventBatch | dict[str, Any] | str | bytes]) -> int:
        """Apply batches in order; stops at the first failing batch."""
        for batch in batches:
            self.apply(batch)
        return self._transaction_number

    def _apply_event(self, event: Event) -> None:
        handler = _HANDLERS[type(event)]
        handler(self, event)

    def _new_object(self, event: NewObject) -> None:
        object_id = event.object_id
        if object_id in self._objects:
            raise ObjectExists(object_id, disposed=self._objects[object_id] is None)
        self._objects[object_id] = new_container(event.kind)
        self._record(lambda: self._objects.pop(object_id))

    def _disposed(self, event: Disposed) -> None:
        object_id = event.object_id
        obj = self._live(object_id)
        self._objects[object_id] = None
        self._record(lambda: self._objects.__setitem__(object_id, obj))

    def _new_property(self, event: NewProperty) -> None:
        expected = len(self._property_names)
        if event.index != expected:
            raise PropertyIndexMismatch(event.name, expected=expected, actual=event.index)
        self._property_names.append(event.name)
        self._record(self._property_names.pop)

    def _property_changed(self, event: PropertyChanged) -> None:
        target = self._live(event.object_id)
        name = self._property(event.property_index)
        value = self._resolve(event.value)
        if isinstance(target, dict):
            previous = target.get(name, _MISSING)
            target[name] = value
            self._record(lambda: _restore_field(target, name, previous))
        elif isinstance(target, UniqueMap):
            self._snapshot_entries(target)
            target[name] = value
        else:
            raise WrongObjectKind(event.object_id, expected="plain", actual=_kind_label(target))

    def _list_insert(self, event: ListInsert) -> None:
        target = self._sequence(event.object_id)
        position = event.position
        if position > len(target):
            raise PositionOutOfRange(event.object_id, position, len(target))
        target.insert(position, self._resolve(event.value))
        self._record(lambda: target.__delitem__(position))

    def _collection_clear(self, event: CollectionClear) -> None:
        target = self._live(event.object_id)
        if isinstance(target, list):
            items = list(target)
            target.clear()
            self._record(lambda: target.extend(items))
        elif isinstance(target, (UniqueMap, UniqueSet)):
            self._snapshot_entries(target)
            target.clear()
        else:
            raise WrongObjectKind(
                event.object_id, expected="sequence, map or set", actual=_kind_label(target)
            )

    def _list_remove_at(self, event: ListRemoveAt) -> None:
        target = self._sequence(event.object_id)
        position = event.position
        if position >= len(target):
            raise PositionOutOfRange(event.object_id, position, len(target))
        removed = target.pop(position)
        self._record(lambda: target.insert(position, removed))

    def _collection_remove_key(self, event: CollectionRemoveKey) -> None:
        target = self._live(event.object_id)
        if not isinstance(target, (UniqueMap, UniqueSet)):
            raise WrongObjectKind(
                event.object_id, expected="map or set", actual=_kind_label(target)
            )
        key = self._resolve(event.key)
        if key not in target:
            raise MissingEntry(event.object_id, key)
        self._snapshot_entries(target)
        if isinstance(target, UniqueMap):
            del target[key]
        else:
            target.remove(key)

    def _map_set(self, event: MapSet) -> None:
        target = self._live(event.object_id)
        if not isinstance(target, UniqueMap):
            raise WrongObjectKind(event.object_id, expected="map", actual=_kind_label(target))
        key = self._resolve(event.key)
        value = self._resolve(event.value)
        self._snapshot_entries(target)
        target[key] = value

    def _set_add(self, event: SetAdd) -> None:
        target = self._live(event.object_id)
        if not isinstance(target, UniqueSet):
            raise WrongObjectKind(event.object_id, expected="set", actual=_kind_label(target))
        value = self._resolve(event.value)
        self._snapshot_entries(target)
        target.add(value)

    # -- Lookups ---------------------------------------------------------------

    def _live(self, object_id: Any) -> Any:
        obj = self._objects.get(object_id)
        if obj is None:
            raise UnknownObject(object_id, disposed=object_id in self._objects)
        return obj

    def _sequence(self, object_id: int) -> list[Any]:
        target = self._live(object_id)
        if not isinstance(target, list):
            raise WrongObjectKind(
                object_id, expected=ContainerKind.SEQUENCE.label, actual=_kind_label(target)
            )
        return target

    def _property(self, index: int) -> str:
        if index >= len(self._property_names):
            raise UnknownProperty(index, available=len(self._property_names))
        return self._property_names[index]

    def _resolve(self, value: Any) -> Any:
        """Replace a reference marker by the live object it targets."""
        target = self._keys.reference_target(value)
        if target is None:
            return value
        return self._live(target)

    # -------------------------------------------------------------------------
    # Journal and savepoints
    # -------------------------------------------------------------------------

    def _record(self, step: UndoStep) -> None:
        self._journal.append(step)

    def _snapshot_entries(self, target: UniqueMap | UniqueSet) -> None:
        """Record an undo step restoring *target*'s entries and their order."""
        if isinstance(target, UniqueMap):
            entries = target.entries()

            def restore_map() -> None:
                target.clear()
                for key, value in entries:
                    target[key] = value

            self._record(restore_map)
        else:
            members = list(target)

            def restore_set() -> None:
                target.clear()
                for member in members:
                    target.add(member)

            self._record(restore_set)

    def _undo_to(self, mark: int) -> None:
        while len(self._journal) > mark:
            self._journal.pop()()

    def savepoint(self, name: str) -> None:
        """Create a named savepoint of the current state."""
        self._savepoints[name] = (len(self._journal), self._transaction_number)

    def rollback_to(self, name: str) -> None:
        """Restore the state of a named savepoint.

        Savepoints created after it are discarded; the savepoint itself is kept.

        Raises:
            ValueError: If there is no savepoint with that name.
        """
        if name not in self._savepoints:
            raise ValueError(f"No savepoint named '{name}'")
        mark, transaction = self._savepoints[name]
        self._undo_to(mark)
        self._savepoints = {n: sp for n, sp in self._savepoints.items() if sp[0] <= mark}
        log.info("store_rolled_back", savepoint=name, transaction=transaction)

    def release(self, name: str) -> None:
        """Discard a named savepoint."""
        self._savepoints.pop(name, None)
        if not self._savepoints:
            self._journal.clear()


def _restore_field(target: dict[str, Any], name: str, previous: Any) -> None:
    if previous is _MISSING:
        del target[name]
    else:
        target[name] = previous


_HANDLERS: dict[type[Event], Callable[[ObjectGraphStore, Any], None]] = {
    NewObject: ObjectGraphStore._new_object,
    Disposed: ObjectGraphStore._disposed,
    NewProperty: ObjectGraphStore._new_property,
    PropertyChanged: ObjectGraphStore._property_changed,
    ListInsert: ObjectGraphStore._list_insert,
    CollectionClear: ObjectGraphStore._collection_clear,
    ListRemoveAt: ObjectGraphStore._list_remove_at,
    CollectionRemoveKey: ObjectGraphStore._collection_remove_key,
    MapSet: ObjectGraphStore._map_set,
    SetAdd: ObjectGraphStore._set_add,
}
