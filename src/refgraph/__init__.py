"""refgraph - reference-preserving graph codec and event-sourced graph store."""

from refgraph.codec import (
    DEFAULT_PREFIX,
    Codec,
    CodecOptions,
    ExternalRegistry,
    Replacement,
    deserialize,
    encode,
    serialize,
)
from refgraph.errors import CodecError, RefgraphError, StoreError
from refgraph.store import EventBatch, ObjectGraphStore
from refgraph.values import ContainerKind, UniqueMap, UniqueSet

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_PREFIX",
    "Codec",
    "CodecError",
    "CodecOptions",
    "ContainerKind",
    "EventBatch",
    "ExternalRegistry",
    "ObjectGraphStore",
    "RefgraphError",
    "Replacement",
    "StoreError",
    "UniqueMap",
    "UniqueSet",
    "__version__",
    "deserialize",
    "encode",
    "serialize",
]
