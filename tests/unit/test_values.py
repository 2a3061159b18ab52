"""Tests for UniqueMap, UniqueSet and container classification."""

from __future__ import annotations

import pytest

from refgraph.values import (
    ContainerKind,
    UniqueMap,
    UniqueSet,
    container_kind,
    is_scalar,
    new_container,
)


class TestUniqueMap:
    """Test graph key semantics of UniqueMap."""

    def test_scalar_keys_compare_by_value(self) -> None:
        """Equal scalars address the same entry."""
        m = UniqueMap()
        m["key"] = 1
        m["".join(["k", "ey"])] = 2
        assert len(m) == 1
        assert m["key"] == 2

    def test_int_and_float_share_a_key(self) -> None:
        """1 and 1.0 are the same number."""
        m = UniqueMap([(1, "int")])
        m[1.0] = "float"
        assert len(m) == 1
        assert m[1] == "float"

    def test_bool_is_distinct_from_number(self) -> None:
        """True and 1 are different keys."""
        m = UniqueMap([(1, "one"), (True, "true")])
        assert len(m) == 2
        assert m[1] == "one"
        assert m[True] == "true"

    def test_compound_keys_compare_by_identity(self) -> None:
        """Equal dicts are different keys; the same dict is one key."""
        a: dict[str, int] = {}
        b: dict[str, int] = {}
        m = UniqueMap([(a, "a"), (b, "b")])
        assert m[a] == "a"
        assert m[b] == "b"
        assert {} not in m

    def test_none_key(self) -> None:
        """None is a valid key."""
        m = UniqueMap()
        m[None] = "nullKey"
        assert m[None] == "nullKey"

    def test_replacing_value_keeps_position(self) -> None:
        """Setting an existing key keeps insertion order."""
        m = UniqueMap([("a", 1), ("b", 2)])
        m["a"] = 3
        assert m.entries() == [("a", 3), ("b", 2)]

    def test_missing_key_raises(self) -> None:
        """Missing keys raise KeyError with the key."""
        m = UniqueMap()
        with pytest.raises(KeyError):
            m["absent"]
        with pytest.raises(KeyError):
            del m["absent"]

    def test_map_keyed_by_itself(self) -> None:
        """A map can use itself as a key and repr does not recurse forever."""
        m = UniqueMap()
        m[m] = "self"
        assert m[m] == "self"
        assert "..." in repr(m)

    def test_equality_is_identity(self) -> None:
        """Two maps with the same entries are not equal."""
        assert UniqueMap([("a", 1)]) != UniqueMap([("a", 1)])
        m = UniqueMap()
        assert m == m

    def test_clear(self) -> None:
        """clear empties the map."""
        m = UniqueMap([("a", 1), ("b", 2)])
        m.clear()
        assert len(m) == 0
        assert list(m) == []


class TestUniqueSet:
    """Test graph membership semantics of UniqueSet."""

    def test_set_contains_itself(self) -> None:
        """A set can be a member of itself."""
        s = UniqueSet([1])
        s.add(s)
        s.add(2)
        assert s in s
        assert list(s)[1] is s
        assert len(s) == 3

    def test_add_is_idempotent(self) -> None:
        """Adding an existing member keeps the original order."""
        s = UniqueSet(["a", "b"])
        s.add("a")
        assert list(s) == ["a", "b"]

    def test_identity_membership(self) -> None:
        """Members that are records compare by identity."""
        record: dict[str, int] = {"x": 1}
        s = UniqueSet([record])
        assert record in s
        assert {"x": 1} not in s

    def test_remove_missing_raises(self) -> None:
        """remove raises KeyError; discard does not."""
        s = UniqueSet()
        s.discard("absent")
        with pytest.raises(KeyError):
            s.remove("absent")

    def test_repr_of_self_containing_set(self) -> None:
        """repr handles self containment."""
        s = UniqueSet()
        s.add(s)
        assert repr(s).startswith("UniqueSet([")


class TestContainerKind:
    """Test container classification helpers."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ({}, ContainerKind.PLAIN),
            ([], ContainerKind.SEQUENCE),
            ((), ContainerKind.SEQUENCE),
            (UniqueMap(), ContainerKind.MAP),
            (UniqueSet(), ContainerKind.SET),
            (set(), ContainerKind.SET),
            (1, None),
            ("s", None),
            (object(), None),
        ],
    )
    def test_container_kind(self, value: object, expected: ContainerKind | None) -> None:
        """Values are classified by container kind."""
        assert container_kind(value) is expected

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("", ContainerKind.PLAIN),
            ("plain", ContainerKind.PLAIN),
            ("A", ContainerKind.SEQUENCE),
            ("sequence", ContainerKind.SEQUENCE),
            ("M", ContainerKind.MAP),
            ("map", ContainerKind.MAP),
            ("S", ContainerKind.SET),
            ("Set", ContainerKind.SET),
        ],
    )
    def test_parse(self, name: str, expected: ContainerKind) -> None:
        """Wire tags and long names both parse."""
        assert ContainerKind.parse(name) is expected

    def test_parse_unknown(self) -> None:
        """Unknown kinds raise ValueError."""
        with pytest.raises(ValueError, match="Unknown container kind"):
            ContainerKind.parse("X")

    def test_new_container(self) -> None:
        """new_container builds empty values of each kind."""
        assert new_container(ContainerKind.PLAIN) == {}
        assert new_container(ContainerKind.SEQUENCE) == []
        assert isinstance(new_container(ContainerKind.MAP), UniqueMap)
        assert isinstance(new_container(ContainerKind.SET), UniqueSet)

    def test_is_scalar(self) -> None:
        """Scalars are None, bools, numbers and strings."""
        assert all(is_scalar(v) for v in (None, True, 0, 1.5, "x"))
        assert not any(is_scalar(v) for v in ({}, [], object()))
