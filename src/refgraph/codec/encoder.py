"""Graph encoder: live object graph to reference-preserving JSON.

The encoder walks the graph once, in pre-order. Every compound value gets the
next ordinal id on its first visit and is emitted inline; every later visit
(self references included) is emitted as a reference marker and its children
are not walked again. Ids are dense and increase in visitation order, which
the decoder and the graph store rely on.

Encoded shapes (``P`` is the marker prefix)::

    record       {"field": ..., "P°": 3}
    reference    {"P>": 3}
    sequence     [{"Pþ": [4, "A"]}, item, ...]
    map          [{"Pþ": [5, "M"]}, [key, value], ...]
    set          [{"Pþ": [6, "S"]}, member, ...]
    substituted  {"name": "db", "P°": 7, "Pþ": "tag"}
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from refgraph.codec.hooks import CodecOptions, Replacement
from refgraph.codec.markers import DEFAULT_PREFIX, MarkerKeys, Reference
from refgraph.errors import InvalidTypeTag, MarkerConflict, UnsupportedValue
from refgraph.observability.logging import get_logger
from refgraph.values import ContainerKind, container_kind, is_scalar

if TYPE_CHECKING:
    from types import TracebackType

    from refgraph.codec.hooks import Substitute

log = get_logger(__name__)


class EncodingScope:
    """Per-call identity table of the encoder.

    Maps ``id(value)`` to the ordinal assigned on first visit. Visited values
    are pinned for the lifetime of the scope so their ``id()`` cannot be
    recycled mid-walk. The table is cleared on every exit path, so nothing
    survives into a later, unrelated encoding of the same values.
    """

    def __init__(self) -> None:
        self._ordinals: dict[int, int] = {}
        self._pinned: list[Any] = []

    def __enter__(self) -> EncodingScope:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._ordinals.clear()
        self._pinned.clear()

    def __len__(self) -> int:
        return len(self._pinned)

    def lookup(self, value: Any) -> int | None:
        return self._ordinals.get(id(value))

    def assign(self, value: Any) -> int:
        ordinal = len(self._pinned)
        self._ordinals[id(value)] = ordinal
        self._pinned.append(value)
        return ordinal


# (value, output container, slot in that container, path)
_Task = tuple[Any, Any, Any, str]


class Encoder:
    """Encodes object graphs with a fixed prefix and substitution hook.

    The walk runs on an explicit stack, so graph depth is bounded by memory
    and by ``json.dumps``, not by the interpreter's recursion limit. Output
    containers are created on first visit with empty slots that the child
    tasks fill in; children are pushed in reverse so ids follow pre-order.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX, substitute: Substitute | None = None):
        self.keys = MarkerKeys(prefix)
        self.substitute = substitute

    def encode(self, value: Any) -> Any:
        """Encode *value* into a primitive JSON tree."""
        root: list[Any] = [None]
        with EncodingScope() as scope:
            stack: list[_Task] = [(value, root, 0, "$")]
            while stack:
                item, out, slot, path = stack.pop()
                out[slot] = self._visit(item, scope, path, stack)
            log.debug("graph_encoded", nodes=len(scope), prefix=self.keys.prefix)
        return root[0]

    def serialize(self, value: Any) -> str:
        """Encode *value* into JSON text."""
        tree = self.encode(value)
        try:
            return json.dumps(tree, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        except ValueError as e:
            raise UnsupportedValue("float", reason=str(e)) from e
        except RecursionError as e:
            raise UnsupportedValue(
                type(value).__name__, reason="graph is nested too deep for JSON text"
            ) from e

    # -- Walk ------------------------------------------------------------------

    def _visit(self, value: Any, scope: EncodingScope, path: str, stack: list[_Task]) -> Any:
        """Encode one node; its children are queued on *stack*."""
        if is_scalar(value):
            return value
        if isinstance(value, Reference):
            return self.keys.reference_marker(value.target)

        ordinal = scope.lookup(value)
        if ordinal is not None:
            return self.keys.reference_marker(ordinal)

        kind = container_kind(value)
        ordinal = scope.assign(value)
        tasks: list[_Task] = []

        if kind is ContainerKind.SEQUENCE:
            out: Any = [self.keys.type_marker(ordinal, kind.value)]
            for i, item in enumerate(value):
                out.append(None)
                tasks.append((item, out, i + 1, f"{path}[{i}]"))
        elif kind is ContainerKind.MAP:
            out = [self.keys.type_marker(ordinal, kind.value)]
            for i, (key, item) in enumerate(value.entries()):
                pair: list[Any] = [None, None]
                out.append(pair)
                tasks.append((key, pair, 0, f"{path}<key {i}>"))
                tasks.append((item, pair, 1, f"{path}<value {i}>"))
        elif kind is ContainerKind.SET:
            out = [self.keys.type_marker(ordinal, kind.value)]
            for i, member in enumerate(value):
                out.append(None)
                tasks.append((member, out, i + 1, f"{path}{{{i}}}"))
        else:
            replacement = self._substitute(value, path)
            if replacement is not None:
                out = self._record(
                    replacement.fields, ordinal, path, tasks, type_tag=replacement.type_tag
                )
            elif kind is ContainerKind.PLAIN:
                out = self._record(value, ordinal, path, tasks)
            else:
                raise UnsupportedValue(
                    type(value).__name__, path, "external value was not substituted"
                )

        stack.extend(reversed(tasks))
        return out

    def _record(
        self,
        fields: dict[Any, Any],
        ordinal: int,
        path: str,
        tasks: list[_Task],
        type_tag: str | None = None,
    ) -> dict[str, Any]:
        for key in fields:
            if not isinstance(key, str):
                raise UnsupportedValue(type(key).__name__, path, "record keys must be strings")
            if self.keys.is_reserved(key):
                raise MarkerConflict(key, path)

        # Field slots are filled later; replacing a value keeps the key order.
        out: dict[str, Any] = dict.fromkeys(fields)
        for key, item in fields.items():
            tasks.append((item, out, key, f"{path}.{key}"))
        out[self.keys.index] = ordinal
        if type_tag is not None:
            out[self.keys.type] = type_tag
        return out

    def _substitute(self, value: Any, path: str) -> Replacement | None:
        if self.substitute is None:
            return None
        result = self.substitute(value)
        if result is None or result is value:
            return None
        if isinstance(result, Replacement):
            if not isinstance(result.type_tag, str):
                raise InvalidTypeTag(result.type_tag, path)
            if not isinstance(result.fields, dict):
                raise UnsupportedValue(
                    type(result.fields).__name__, path, "replacement fields must be a dict"
                )
            return result
        if isinstance(result, dict):
            return Replacement(result)
        raise UnsupportedValue(
            type(result).__name__, path, "substitute must return a dict or a Replacement"
        )


def _encoder(
    prefix: str | None, substitute: Substitute | None, options: CodecOptions | None
) -> Encoder:
    if options is not None:
        prefix = options.prefix if prefix is None else prefix
        substitute = substitute or options.substitute
    return Encoder(DEFAULT_PREFIX if prefix is None else prefix, substitute)


def encode(
    value: Any,
    *,
    prefix: str | None = None,
    substitute: Substitute | None = None,
    options: CodecOptions | None = None,
) -> Any:
    """Encode an object graph into a primitive JSON tree.

    Args:
        value: Root of the graph.
        prefix: Marker key prefix (default ``"~$£€"``).
        substitute: Encode-time substitution hook.
        options: Shared codec options; explicit arguments take precedence.

    Returns:
        A tree of dicts, lists and scalars ready for ``json.dumps``.

    Raises:
        MarkerConflict: A record uses a reserved marker key.
        InvalidTypeTag: The hook returned a non-string type tag.
        UnsupportedValue: An external value was not substituted.
    """
    return _encoder(prefix, substitute, options).encode(value)


def serialize(
    value: Any,
    *,
    prefix: str | None = None,
    substitute: Substitute | None = None,
    options: CodecOptions | None = None,
) -> str:
    """Serialize an object graph into reference-preserving JSON text.

    Same arguments and errors as ``encode``.
    """
    return _encoder(prefix, substitute, options).serialize(value)
