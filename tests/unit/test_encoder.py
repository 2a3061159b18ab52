"""Tests for the graph encoder."""

from __future__ import annotations

import json
from typing import Any

import pytest

from refgraph.codec import Encoder, EncodingScope, Reference, Replacement, encode, serialize
from refgraph.errors import InvalidTypeTag, MarkerConflict, UnsupportedValue
from refgraph.values import UniqueMap, UniqueSet, container_kind


class TestEncodedShapes:
    """Test the exact encoded text of small graphs."""

    def test_self_reference(self) -> None:
        """A record pointing at itself becomes a reference to id 0."""
        a: dict[str, Any] = {"v": 1}
        a["rA"] = a
        assert serialize(a) == '{"v":1,"rA":{"~$£€>":0},"~$£€°":0}'

    def test_array_reference_with_prefix(self) -> None:
        """Arrays are tagged with their id and kind."""
        a: dict[str, Any] = {"arr": ["Test"]}
        a["arr"].append(a)
        assert serialize(a, prefix="-") == '{"arr":[{"-þ":[1,"A"]},"Test",{"->":0}],"-°":0}'

    def test_ids_are_assigned_in_pre_order(self) -> None:
        """Parents are numbered before their children, left to right."""
        a: dict[str, Any] = {"a": {}, "b": [{}]}
        assert encode(a, prefix="") == {
            "a": {"°": 1},
            "b": [{"þ": [2, "A"]}, {"°": 3}],
            "°": 0,
        }

    def test_scalars_pass_through(self) -> None:
        """Scalar roots are emitted as themselves."""
        assert serialize(None) == "null"
        assert serialize("é") == '"é"'
        assert serialize(1.5) == "1.5"

    def test_map_entries_are_pairs(self) -> None:
        """Maps are tagged arrays of [key, value] pairs."""
        m = UniqueMap([("k", "v"), (None, 1)])
        assert encode(m) == [{"~$£€þ": [0, "M"]}, ["k", "v"], [None, 1]]

    def test_set_members(self) -> None:
        """Sets are tagged arrays of members; Python sets are accepted."""
        s = UniqueSet(["x"])
        s.add(s)
        assert encode(s) == [{"~$£€þ": [0, "S"]}, "x", {"~$£€>": 0}]
        assert encode({1}) == [{"~$£€þ": [0, "S"]}, 1]

    def test_tuple_is_a_sequence(self) -> None:
        """Tuples encode like lists."""
        assert encode((1, 2)) == [{"~$£€þ": [0, "A"]}, 1, 2]

    def test_shared_value_is_emitted_once(self) -> None:
        """A node reached twice is inlined once and referenced after."""
        shared: dict[str, Any] = {"x": 1}
        assert encode([shared, shared], prefix="") == [
            {"þ": [0, "A"]},
            {"x": 1, "°": 1},
            {">": 1},
        ]

    def test_substituted_record_carries_type_tag(self) -> None:
        """A Replacement is written as a record with its type tag."""
        ext = object()

        def substitute(value: Any) -> Any:
            return Replacement({"name": "db"}, "conn") if value is ext else None

        assert encode([ext], prefix="", substitute=substitute) == [
            {"þ": [0, "A"]},
            {"name": "db", "°": 1, "þ": "conn"},
        ]

    def test_dict_substitution_has_empty_tag(self) -> None:
        """A plain dict returned by the hook is tagged with ''."""
        ext = object()
        tree = encode(ext, prefix="", substitute=lambda v: {"EXT": 1} if v is ext else None)
        assert tree == {"EXT": 1, "°": 0, "þ": ""}

    def test_substitute_returning_value_itself(self) -> None:
        """Returning the value unchanged means no substitution."""
        assert encode({"a": 1}, prefix="", substitute=lambda v: v) == {"a": 1, "°": 0}


class TestMarkerConflicts:
    """Test that user keys colliding with markers are rejected."""

    @pytest.mark.parametrize(
        ("value", "prefix"),
        [
            ({"~$£€>": "idx"}, "~$£€"),
            ({"~$£€>": None}, "~$£€"),
            ({"~$£€þ": {}}, "~$£€"),
            ([{"~$£€>": "idx"}], "~$£€"),
            ([{"~$£€>": None}], "~$£€"),
            ([{"~$£€þ": {}}], "~$£€"),
            ({"i": 1, "Y": [{"~$£€°": 9}]}, "~$£€"),
            ({"i": 2, "Y": [{">": 9}]}, ""),
            ({"i": 3, "Y": [{"~þ": 9}]}, "~"),
        ],
    )
    def test_conflict_detected(self, value: Any, prefix: str) -> None:
        """Every reserved key raises MarkerConflict."""
        with pytest.raises(MarkerConflict):
            serialize(value, prefix=prefix)

    def test_conflict_reports_path(self) -> None:
        """The error names the key and where it was found."""
        with pytest.raises(MarkerConflict) as exc_info:
            serialize({"i": 3, "Y": [{"~þ": 9}]}, prefix="~")
        assert exc_info.value.key == "~þ"
        assert exc_info.value.path == "$.Y[0]"

    def test_other_prefix_is_fine(self) -> None:
        """Marker-like keys of another prefix are plain data."""
        assert json.loads(serialize({"~$£€>": 1}, prefix="#")) == {"~$£€>": 1, "#°": 0}


class TestEncoderErrors:
    """Test encoder error paths."""

    def test_non_string_type_tag(self) -> None:
        """A Replacement with a non-string tag raises InvalidTypeTag."""
        ext = object()
        with pytest.raises(InvalidTypeTag):
            encode(ext, substitute=lambda v: Replacement({"n": 1}, 5))  # type: ignore[arg-type]

    def test_external_without_substitution(self) -> None:
        """Non-JSON values must be substituted."""
        with pytest.raises(UnsupportedValue, match="not substituted"):
            encode({"x": object()})

    def test_non_string_record_key(self) -> None:
        """Record keys must be strings."""
        with pytest.raises(UnsupportedValue, match="keys must be strings"):
            encode({1: "a"})

    def test_nan_is_rejected(self) -> None:
        """NaN has no JSON form."""
        with pytest.raises(UnsupportedValue):
            serialize({"x": float("nan")})

    def test_bad_substitute_result(self) -> None:
        """The hook must return None, a dict or a Replacement."""
        with pytest.raises(UnsupportedValue, match="substitute must return"):
            encode(object(), substitute=lambda v: 42)


class TestEncodingScope:
    """Test the per-call identity table."""

    def test_assign_and_lookup(self) -> None:
        """Ordinals are dense and looked up by identity."""
        a: dict[str, int] = {}
        b: dict[str, int] = {}
        with EncodingScope() as scope:
            assert scope.assign(a) == 0
            assert scope.assign(b) == 1
            assert scope.lookup(a) == 0
            assert scope.lookup({}) is None
            assert len(scope) == 2

    def test_cleared_on_exception(self) -> None:
        """The table is emptied when the walk fails."""
        scope = EncodingScope()
        with pytest.raises(RuntimeError), scope:
            scope.assign({})
            raise RuntimeError("boom")
        assert len(scope) == 0

    def test_source_is_not_mutated(self) -> None:
        """Encoding leaves no markers behind, even after a failure."""
        inner: dict[str, Any] = {"v": 1}
        graph: dict[str, Any] = {"inner": inner, "list": [inner]}
        encode(graph)
        assert graph == {"inner": {"v": 1}, "list": [{"v": 1}]}

        graph["bad"] = object()
        with pytest.raises(UnsupportedValue):
            encode(graph)
        assert inner == {"v": 1}

    def test_encoder_is_reusable(self) -> None:
        """Two calls on one Encoder number independently."""
        encoder = Encoder(prefix="")
        a: dict[str, Any] = {}
        assert encoder.encode([a]) == encoder.encode([a])


class TestReferencePlaceholders:
    """Test encoding of unresolved decode placeholders."""

    def test_placeholder_encodes_as_reference(self) -> None:
        """A Reference is written as a reference marker, not as a sequence."""
        assert encode({"owner": Reference(3)}, prefix="") == {"owner": {">": 3}, "°": 0}

    def test_placeholder_is_not_a_container(self) -> None:
        """Reference is neither a sequence nor a record."""
        assert container_kind(Reference(0)) is None
