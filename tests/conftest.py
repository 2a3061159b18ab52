"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest

from refgraph.codec import DEFAULT_PREFIX, deserialize, serialize

RoundTrip = Callable[..., list[Any]]


@pytest.fixture(autouse=True)
def clean_prefix_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's REFGRAPH_PREFIX from leaking into tests."""
    monkeypatch.delenv("REFGRAPH_PREFIX", raising=False)


@pytest.fixture
def round_trip() -> RoundTrip:
    """Serialize a graph and check both decode paths are idempotent.

    The returned function decodes from the text and from the parsed JSON
    tree, asserts that re-serializing each gives back the exact same text,
    and returns both decoded graphs so the caller can check their shape.
    """

    def check(
        value: Any,
        *,
        prefix: str = DEFAULT_PREFIX,
        substitute: Callable[[Any], Any] | None = None,
        activate: Callable[[dict[str, Any], str], Any] | None = None,
    ) -> list[Any]:
        text = serialize(value, prefix=prefix, substitute=substitute)

        from_tree = deserialize(json.loads(text), prefix=prefix, activate=activate)
        assert serialize(from_tree, prefix=prefix, substitute=substitute) == text

        from_text = deserialize(text, prefix=prefix, activate=activate)
        assert serialize(from_text, prefix=prefix, substitute=substitute) == text

        return [from_text, from_tree]

    return check
