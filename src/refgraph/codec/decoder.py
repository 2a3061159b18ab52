"""Graph decoder: reference-preserving JSON back to a live object graph.

Decoding runs in two phases over one call-local state:

1. Materialize-and-register, children before parents. Tagged arrays become
   ``list``, ``UniqueMap`` or ``UniqueSet`` and are registered at their id;
   records carrying the index marker are stripped and registered; substituted
   records go through the activation hook and, if activated, are marked
   external. Reference markers become ``Reference`` placeholders. Unmarked
   records and arrays are copied as ordinary data.
2. Fixup. Every placeholder among the immediate children of a container is
   replaced by the registered node. Maps and sets are filled in this phase,
   so identity keys are the live nodes. External nodes, and the unmarked
   records and arrays anywhere below them, are never scanned: whatever the
   activator kept is its own business. Numbered nodes below an external
   node are still resolved.

Phase 1 walks an explicit stack, so document depth is limited by
``json.loads`` rather than by the interpreter's recursion limit. The input
tree is never mutated: every container in the result is new.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NamedTuple

from refgraph.codec.markers import DEFAULT_PREFIX, MarkerKeys, Reference, is_ordinal
from refgraph.errors import (
    DanglingReference,
    DuplicateIndex,
    InvalidTypeTag,
    MalformedInput,
    UnknownContainerType,
)
from refgraph.observability.logging import get_logger
from refgraph.values import ContainerKind, UniqueMap, UniqueSet

if TYPE_CHECKING:
    from refgraph.codec.hooks import Activate, CodecOptions

log = get_logger(__name__)

_TAGGED_KINDS = {kind.value: kind for kind in ContainerKind if kind is not ContainerKind.PLAIN}

# (raw value, output container, slot in that container, path)
_Task = tuple[Any, Any, Any, str]
# A task, or a finisher run once all children of a node are materialized
_Frame = _Task | Callable[[], None]


class _Fixup(NamedTuple):
    node: Any
    entries: list[Any] | None  # raw entries of maps and sets
    path: str
    plain: bool  # unmarked record or array, not part of the registry


@dataclass
class _DecodeState:
    """State of one decode call; dropped when the call returns."""

    registry: dict[int, Any] = field(default_factory=dict)
    external: set[int] = field(default_factory=set)
    fixups: list[_Fixup] = field(default_factory=list)

    def register(self, ordinal: int, node: Any, path: str) -> None:
        if ordinal in self.registry:
            raise DuplicateIndex(ordinal, path)
        self.registry[ordinal] = node


class Decoder:
    """Decodes documents with a fixed prefix and activation hook."""

    def __init__(self, prefix: str = DEFAULT_PREFIX, activate: Activate | None = None):
        self.keys = MarkerKeys(prefix)
        self.activate = activate

    def decode(self, data: Any) -> Any:
        """Decode JSON text, or an already parsed tree, into a live graph."""
        tree = self._parse(data)
        state = _DecodeState()
        root: list[Any] = [None]
        stack: list[_Frame] = [(tree, root, 0, "$")]
        while stack:
            frame = stack.pop()
            if callable(frame):
                frame()
            else:
                self._materialize(*frame, state, stack)
        self._fixup(state)
        log.debug(
            "graph_decoded",
            nodes=len(state.registry),
            external=len(state.external),
            prefix=self.keys.prefix,
        )
        return self._resolve(root[0], state, "$")

    @staticmethod
    def _parse(data: Any) -> Any:
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        if isinstance(data, str):
            try:
                return json.loads(data)
            except json.JSONDecodeError as e:
                raise MalformedInput(f"invalid JSON: {e}") from e
            except RecursionError as e:
                raise MalformedInput("document is nested too deep") from e
        return data

    # -- Phase 1: materialize and register -------------------------------------

    def _materialize(
        self, value: Any, out: Any, slot: Any, path: str, state: _DecodeState, stack: list[_Frame]
    ) -> None:
        if isinstance(value, dict):
            out[slot] = self._materialize_record(value, out, slot, path, state, stack)
        elif isinstance(value, (list, tuple)):
            out[slot] = self._materialize_array(value, path, state, stack)
        else:
            out[slot] = value

    def _materialize_array(
        self,
        value: list[Any] | tuple[Any, ...],
        path: str,
        state: _DecodeState,
        stack: list[_Frame],
    ) -> Any:
        payload = self.keys.type_marker_payload(value[0]) if value else None
        if payload is None:
            items: list[Any] = [None] * len(value)
            state.fixups.append(_Fixup(items, None, path, plain=True))
            stack.extend(
                (item, items, i, f"{path}[{i}]") for i, item in reversed(list(enumerate(value)))
            )
            return items

        ordinal, kind = self._parse_container_tag(payload, path)
        items = [None] * (len(value) - 1)
        tasks = [
            (item, items, i - 1, f"{path}[{i}]") for i, item in enumerate(value[1:], start=1)
        ]

        node: Any
        if kind is ContainerKind.SEQUENCE:
            node = items
            state.fixups.append(_Fixup(node, None, path, plain=False))
        elif kind is ContainerKind.MAP:
            node = UniqueMap()
            state.fixups.append(_Fixup(node, items, path, plain=False))
        else:
            node = UniqueSet()
            state.fixups.append(_Fixup(node, items, path, plain=False))

        def finish() -> None:
            if kind is ContainerKind.MAP:
                for i, pair in enumerate(items, start=1):
                    if not isinstance(pair, list) or len(pair) != 2:
                        raise MalformedInput(
                            "map entry must be a [key, value] pair", f"{path}[{i}]"
                        )
            state.register(ordinal, node, path)

        stack.append(finish)
        stack.extend(reversed(tasks))
        return node

    def _parse_container_tag(self, payload: Any, path: str) -> tuple[int, ContainerKind]:
        if not isinstance(payload, list) or len(payload) != 2:
            raise UnknownContainerType(payload, path)
        ordinal, tag = payload
        kind = _TAGGED_KINDS.get(tag) if isinstance(tag, str) else None
        if kind is None:
            raise UnknownContainerType(tag, path)
        if not is_ordinal(ordinal):
            raise MalformedInput(f"container id must be a non-negative integer: {ordinal!r}", path)
        return ordinal, kind

    def _materialize_record(
        self,
        value: dict[str, Any],
        out: Any,
        slot: Any,
        path: str,
        state: _DecodeState,
        stack: list[_Frame],
    ) -> Any:
        keys = self.keys
        if keys.reference in value:
            target = keys.reference_target(value)
            if target is None:
                raise MalformedInput("reference marker must be a single non-negative id", path)
            return Reference(target)

        fields: dict[str, Any] = {
            key: None for key in value if key != keys.index and key != keys.type
        }
        tasks = [
            (item, fields, key, f"{path}.{key}") for key, item in value.items() if key in fields
        ]
        has_type = keys.type in value

        if keys.index not in value:
            if has_type:
                raise MalformedInput("type tag on a record without an index", path)
            state.fixups.append(_Fixup(fields, None, path, plain=True))
            stack.extend(reversed(tasks))
            return fields

        ordinal = value[keys.index]
        if not is_ordinal(ordinal):
            raise MalformedInput(f"record id must be a non-negative integer: {ordinal!r}", path)
        type_tag = value.get(keys.type)
        if has_type and not isinstance(type_tag, str):
            raise InvalidTypeTag(type_tag, path)
        mark = len(state.fixups)

        def finish() -> None:
            if has_type and self.activate is not None:
                activated = self.activate(fields, type_tag)
                if activated is not None:
                    state.register(ordinal, activated, path)
                    state.external.add(ordinal)
                    state.fixups[mark:] = [f for f in state.fixups[mark:] if not f.plain]
                    out[slot] = activated
                    return
            state.register(ordinal, fields, path)
            state.fixups.append(_Fixup(fields, None, path, plain=False))

        stack.append(finish)
        stack.extend(reversed(tasks))
        return fields

    # -- Phase 2: reference fixup ----------------------------------------------

    def _fixup(self, state: _DecodeState) -> None:
        for node, entries, path, _ in state.fixups:
            if isinstance(node, dict):
                for key, item in node.items():
                    if isinstance(item, Reference):
                        node[key] = self._resolve(item, state, f"{path}.{key}")
            elif isinstance(node, list):
                for i, item in enumerate(node):
                    if isinstance(item, Reference):
                        node[i] = self._resolve(item, state, f"{path}[{i}]")
            elif isinstance(node, UniqueMap):
                for i, (key, item) in enumerate(entries or (), start=1):
                    node[self._resolve(key, state, f"{path}[{i}]")] = self._resolve(
                        item, state, f"{path}[{i}]"
                    )
            else:
                for i, member in enumerate(entries or (), start=1):
                    node.add(self._resolve(member, state, f"{path}[{i}]"))

    @staticmethod
    def _resolve(value: Any, state: _DecodeState, path: str) -> Any:
        if not isinstance(value, Reference):
            return value
        try:
            return state.registry[value.target]
        except KeyError:
            raise DanglingReference(value.target, path) from None


def deserialize(
    data: Any,
    *,
    prefix: str | None = None,
    activate: Activate | None = None,
    options: CodecOptions | None = None,
) -> Any:
    """Deserialize reference-preserving JSON into a live object graph.

    Args:
        data: JSON text (``str`` or ``bytes``) or an already parsed tree. A
            parsed tree may embed an encoded document inside hand-built data.
        prefix: Marker key prefix; must match the one used to encode.
        activate: Decode-time activation hook.
        options: Shared codec options; explicit arguments take precedence.

    Returns:
        The root of the decoded graph.

    Raises:
        UnknownContainerType: A tagged array declares an unknown kind.
        InvalidTypeTag: A record's type tag is not a string.
        DanglingReference: A reference points at an id never materialized.
        DuplicateIndex: Two nodes declare the same id.
        MalformedInput: The text is not JSON, or a marker is malformed.
    """
    if options is not None:
        prefix = options.prefix if prefix is None else prefix
        activate = activate or options.activate
    decoder = Decoder(DEFAULT_PREFIX if prefix is None else prefix, activate)
    return decoder.decode(data)
