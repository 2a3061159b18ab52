"""Reference-preserving graph codec.

Serializes possibly cyclic graphs of records, sequences, maps, sets and
substituted external objects into JSON text, and back, keeping every shared
identity and cycle.
"""

from refgraph.codec.decoder import Decoder, deserialize
from refgraph.codec.encoder import Encoder, EncodingScope, encode, serialize
from refgraph.codec.hooks import (
    Activate,
    Codec,
    CodecOptions,
    ExternalRegistry,
    Replacement,
    Substitute,
)
from refgraph.codec.markers import DEFAULT_PREFIX, MarkerKeys, Reference

__all__ = [
    "DEFAULT_PREFIX",
    "Activate",
    "Codec",
    "CodecOptions",
    "Decoder",
    "Encoder",
    "EncodingScope",
    "ExternalRegistry",
    "MarkerKeys",
    "Reference",
    "Replacement",
    "Substitute",
    "deserialize",
    "encode",
    "serialize",
]
