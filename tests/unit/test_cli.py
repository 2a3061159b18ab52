"""Test CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from typer.testing import CliRunner

from refgraph import __version__
from refgraph.cli import app
from refgraph.codec import serialize
from refgraph.store import ObjectGraphStore

if TYPE_CHECKING:
    from pathlib import Path

    import pytest

runner = CliRunner()


def _graph() -> dict[str, Any]:
    a: dict[str, Any] = {"v": 1, "arr": ["Test"]}
    a["arr"].append(a)
    return a


def test_version_command() -> None:
    """Test refgraph version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_no_args_shows_help() -> None:
    """Test that no arguments shows help."""
    result = runner.invoke(app, [])
    assert result.exit_code == 2
    assert "check" in result.output
    assert "replay" in result.output


# --- Check Command Tests ---


def test_check_idempotent(tmp_path: Path) -> None:
    """A document written by the encoder round trips exactly."""
    doc = tmp_path / "doc.json"
    doc.write_text(serialize(_graph()) + "\n", encoding="utf-8")

    result = runner.invoke(app, ["check", str(doc)])

    assert result.exit_code == 0
    assert "round trip is idempotent" in result.stdout


def test_check_with_prefix_option(tmp_path: Path) -> None:
    """--prefix selects the marker prefix."""
    doc = tmp_path / "doc.json"
    doc.write_text(serialize(_graph(), prefix="-"), encoding="utf-8")

    result = runner.invoke(app, ["check", str(doc), "--prefix", "-"])

    assert result.exit_code == 0


def test_check_uses_prefix_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """REFGRAPH_PREFIX applies when no --prefix is given."""
    doc = tmp_path / "doc.json"
    doc.write_text(serialize(_graph(), prefix=""), encoding="utf-8")
    monkeypatch.setenv("REFGRAPH_PREFIX", "")

    result = runner.invoke(app, ["check", str(doc)])

    assert result.exit_code == 0


def test_check_uses_prefix_from_config(tmp_path: Path) -> None:
    """The prefix can come from the config file."""
    doc = tmp_path / "doc.json"
    doc.write_text(serialize(_graph(), prefix="#"), encoding="utf-8")
    config = tmp_path / "refgraph.yaml"
    config.write_text("prefix: '#'\n", encoding="utf-8")

    result = runner.invoke(app, ["--config", str(config), "check", str(doc)])

    assert result.exit_code == 0


def test_check_not_idempotent(tmp_path: Path) -> None:
    """A substituted record without an activator does not round trip."""
    doc = tmp_path / "doc.json"
    doc.write_text('{"name":"db","~$£€°":0,"~$£€þ":"conn"}', encoding="utf-8")

    result = runner.invoke(app, ["check", str(doc)])

    assert result.exit_code == 1
    assert "re-encoded text differs" in result.stdout
    assert '{"name":"db","~$£€°":0}' in result.stdout


def test_check_help_mentions_substituted_records() -> None:
    """The check help warns that type tags are dropped without an activator."""
    result = runner.invoke(app, ["check", "--help"])

    assert result.exit_code == 0
    assert "substituted" in result.stdout


def test_check_malformed_input(tmp_path: Path) -> None:
    """Decoding errors are reported and exit with 1."""
    doc = tmp_path / "doc.json"
    doc.write_text('{"a":{"~$£€>":3},"~$£€°":0}', encoding="utf-8")

    result = runner.invoke(app, ["check", str(doc)])

    assert result.exit_code == 1
    assert "DanglingReference" in result.output


def test_missing_config_file(tmp_path: Path) -> None:
    """An explicit config path that does not exist fails early."""
    result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "version"])

    assert result.exit_code == 1
    assert "Failed to load config" in result.output


# --- Replay Command Tests ---


def _write_hello(tmp_path: Path) -> tuple[Path, Path]:
    snapshot = tmp_path / "snapshot.json"
    snapshot.write_text('{"transaction":0,"properties":[],"objects":[]}', encoding="utf-8")
    batch = tmp_path / "batch-1.json"
    batch.write_text(
        json.dumps(
            {
                "transaction": 1,
                "events": [
                    ["New-Object", 0, "plain"],
                    ["New-Property", "Name", 0],
                    ["Property-Changed", 0, 0, "Hello!"],
                ],
            }
        ),
        encoding="utf-8",
    )
    return snapshot, batch


def test_replay_writes_snapshot(tmp_path: Path) -> None:
    """Replayed batches produce a snapshot that reloads."""
    snapshot, batch = _write_hello(tmp_path)
    output = tmp_path / "out.json"

    result = runner.invoke(app, ["replay", str(snapshot), str(batch), "--output", str(output)])

    assert result.exit_code == 0
    assert "transaction 1" in result.stdout
    store = ObjectGraphStore.from_snapshot(output.read_text(encoding="utf-8"))
    assert store.get(0) == {"Name": "Hello!"}
    assert store.property_names == ("Name",)


def test_replay_out_of_order(tmp_path: Path) -> None:
    """Applying the same batch twice fails on the second copy."""
    snapshot, batch = _write_hello(tmp_path)

    result = runner.invoke(app, ["replay", str(snapshot), str(batch), str(batch)])

    assert result.exit_code == 1
    assert "OutOfOrderTransaction" in result.output
