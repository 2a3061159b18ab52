"""Event-sourced graph store.

Holds a decoded object graph and keeps it up to date by replaying ordered,
index-addressed mutation events.
"""

from refgraph.store.events import (
    EVENT_TYPES,
    CollectionClear,
    CollectionRemoveKey,
    Disposed,
    Event,
    EventBatch,
    EventCode,
    ListInsert,
    ListRemoveAt,
    MapSet,
    NewObject,
    NewProperty,
    PropertyChanged,
    SetAdd,
    parse_event,
)
from refgraph.store.graph_store import (
    CONTAINER_CONTENTS_KEY,
    CONTAINER_INDEX_KEY,
    ObjectGraphStore,
    lift_containers,
)

__all__ = [
    "CONTAINER_CONTENTS_KEY",
    "CONTAINER_INDEX_KEY",
    "EVENT_TYPES",
    "CollectionClear",
    "CollectionRemoveKey",
    "Disposed",
    "Event",
    "EventBatch",
    "EventCode",
    "ListInsert",
    "ListRemoveAt",
    "MapSet",
    "NewObject",
    "NewProperty",
    "ObjectGraphStore",
    "PropertyChanged",
    "SetAdd",
    "lift_containers",
    "parse_event",
]
