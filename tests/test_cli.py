"""Tests for the graph-plan command line."""

import json
import logging
import signal
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import pytest

from graph_plan import Executor, InMemoryProvider, MemoryStateStore
from graph_plan._cli import EXIT_CHANGES, EXIT_ERROR, EXIT_OK, cancel_on_interrupt, main

DOCUMENT = {
    "schemas": [{"type": "aws_vpc", "immutable": ["cidr_block"]}],
    "resources": [
        {"type": "aws_vpc", "name": "main", "attributes": {"cidr_block": "10.0.0.0/16"}},
        {
            "type": "aws_subnet",
            "name": "public",
            "attributes": {
                "vpc_id": {"$ref": "aws_vpc.main.id"},
                "cidr_block": "10.0.1.0/24",
            },
        },
    ],
}


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """main() reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def document(tmp_path: Path) -> Path:
    path = tmp_path / "resources.json"
    path.write_text(json.dumps(DOCUMENT))
    return path


class TestGraphCommand:
    """Tests for `graph-plan graph`."""

    def test_prints_waves(self, document: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """The graph command lists waves with dependencies."""
        assert main(["graph", str(document)]) == EXIT_OK
        out = capsys.readouterr().out
        assert out.splitlines() == [
            "wave 0:",
            "  aws_vpc.main",
            "wave 1:",
            "  aws_subnet.public  <- aws_vpc.main",
        ]

    def test_dot(self, document: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """--dot prints Graphviz output."""
        assert main(["graph", str(document), "--dot"]) == EXIT_OK
        assert '"aws_subnet.public" -> "aws_vpc.main";' in capsys.readouterr().out

    def test_cycle_is_error(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """A cyclic document exits with an error message."""
        path = tmp_path / "cycle.json"
        path.write_text(
            json.dumps(
                {
                    "resources": [
                        {"type": "a", "name": "x", "attributes": {"p": {"$ref": "b.y.id"}}},
                        {"type": "b", "name": "y", "attributes": {"p": {"$ref": "a.x.id"}}},
                    ]
                }
            )
        )
        assert main(["graph", str(path)]) == EXIT_ERROR
        assert "error: dependency cycle: a.x -> b.y -> a.x" in capsys.readouterr().err

    def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """A missing resources file is reported, not raised."""
        assert main(["graph", str(tmp_path / "nope.json")]) == EXIT_ERROR
        assert "error:" in capsys.readouterr().err


class TestPlanCommand:
    """Tests for `graph-plan plan`."""

    def test_render(
        self, document: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """plan prints the human-readable plan."""
        state = tmp_path / "state.json"
        assert main(["plan", str(document), "--state", str(state)]) == EXIT_OK
        out = capsys.readouterr().out
        assert "Plan: 2 to add, 0 to change, 0 to replace, 0 to destroy." in out
        assert not state.exists()

    def test_json(
        self, document: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """--json prints the machine-readable plan."""
        state = tmp_path / "state.json"
        assert main(["plan", str(document), "--state", str(state), "--json"]) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert [op["address"] for op in data["operations"]] == [
            "aws_vpc.main",
            "aws_subnet.public",
        ]

    def test_detailed_exitcode(self, document: Path, tmp_path: Path) -> None:
        """--detailed-exitcode returns 2 when there are changes."""
        state = tmp_path / "state.json"
        argv = ["plan", str(document), "--state", str(state), "--detailed-exitcode"]
        assert main(argv) == EXIT_CHANGES

    def test_unknown_target(
        self, document: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """An unknown target is an error."""
        state = tmp_path / "state.json"
        argv = ["plan", str(document), "--state", str(state), "--target", "aws_vpc.x"]
        assert main(argv) == EXIT_ERROR
        assert "aws_vpc.x" in capsys.readouterr().err


class TestApplyCommand:
    """Tests for `graph-plan apply`."""

    def test_apply_writes_state(
        self, document: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """apply records the resources and a second plan has no changes."""
        state = tmp_path / "state.json"
        assert main(["apply", str(document), "--state", str(state)]) == EXIT_OK
        assert "Apply finished: 2 succeeded" in capsys.readouterr().out
        data = json.loads(state.read_text())
        assert [r["address"] for r in data["resources"]] == [
            "aws_vpc.main",
            "aws_subnet.public",
        ]

        argv = ["plan", str(document), "--state", str(state), "--detailed-exitcode"]
        assert main(argv) == EXIT_OK
        assert "No changes." in capsys.readouterr().out

    def test_replace_across_runs(self, document: Path, tmp_path: Path) -> None:
        """Changes are applied against state written by an earlier run."""
        state = tmp_path / "state.json"
        assert main(["apply", str(document), "--state", str(state)]) == EXIT_OK

        changed = json.loads(json.dumps(DOCUMENT))
        changed["resources"][0]["attributes"]["cidr_block"] = "10.1.0.0/16"
        document.write_text(json.dumps(changed))
        assert main(["apply", str(document), "--state", str(state), "--json"]) == EXIT_OK

        records = {r["address"]: r for r in json.loads(state.read_text())["resources"]}
        assert records["aws_vpc.main"]["attributes"]["cidr_block"] == "10.1.0.0/16"
        assert (
            records["aws_subnet.public"]["attributes"]["vpc_id"]
            == records["aws_vpc.main"]["outputs"]["id"]
        )

    def test_destroy(self, document: Path, tmp_path: Path) -> None:
        """apply --destroy empties the state."""
        state = tmp_path / "state.json"
        main(["apply", str(document), "--state", str(state)])
        assert main(["apply", str(document), "--state", str(state), "--destroy"]) == EXIT_OK
        assert json.loads(state.read_text())["resources"] == []


class InterruptingProvider(InMemoryProvider):
    """Sends SIGINT to the process while creating the first resource."""

    def create(
        self, address: str, resource_type: str, attributes: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        if not self.calls:
            signal.raise_signal(signal.SIGINT)
        return super().create(address, resource_type, attributes)


class TestInterrupt:
    """Tests for Ctrl-C during apply."""

    def test_handler_cancels_and_restores(self) -> None:
        """SIGINT inside the block cancels the executor; the old handler comes back."""
        executor = Executor(InMemoryProvider(), MemoryStateStore())
        previous = signal.getsignal(signal.SIGINT)
        with cancel_on_interrupt(executor):
            signal.raise_signal(signal.SIGINT)
            assert executor.cancelled
        assert signal.getsignal(signal.SIGINT) is previous

    def test_interrupted_apply_stops_after_wave(
        self,
        document: Path,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """An interrupted apply finishes the running wave and cancels the rest."""
        monkeypatch.setattr("graph_plan._cli.InMemoryProvider", InterruptingProvider)
        state = tmp_path / "state.json"
        assert main(["apply", str(document), "--state", str(state)]) == EXIT_ERROR
        out = capsys.readouterr().out
        assert "Apply finished: 1 succeeded, 0 failed, 0 skipped, 1 cancelled." in out
        data = json.loads(state.read_text())
        assert [r["address"] for r in data["resources"]] == ["aws_vpc.main"]
