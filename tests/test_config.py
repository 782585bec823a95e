"""Tests for EngineConfig."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from graph_plan import EngineConfig


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Defaults apply when nothing is set."""
        monkeypatch.delenv("GRAPH_PLAN_MAX_WORKERS", raising=False)
        config = EngineConfig()
        assert config.max_workers == 8
        assert config.max_attempts == 5
        assert config.state_path == Path("graph-plan.state.json")
        assert config.context == {}

    def test_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Settings are read from GRAPH_PLAN_ variables."""
        monkeypatch.setenv("GRAPH_PLAN_MAX_WORKERS", "2")
        monkeypatch.setenv("GRAPH_PLAN_CONTEXT", '{"region": "us-east-1"}')
        config = EngineConfig()
        assert config.max_workers == 2
        assert config.context == {"region": "us-east-1"}

    def test_arguments_override_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Explicit arguments win over the environment."""
        monkeypatch.setenv("GRAPH_PLAN_MAX_WORKERS", "2")
        assert EngineConfig(max_workers=6).max_workers == 6

    def test_frozen(self) -> None:
        """Settings cannot be changed after construction."""
        config = EngineConfig()
        with pytest.raises(ValidationError):
            config.max_workers = 1  # type: ignore[misc]

    def test_rejects_zero_workers(self) -> None:
        """At least one worker is required."""
        with pytest.raises(ValidationError):
            EngineConfig(max_workers=0)

    def test_rejects_inverted_delays(self) -> None:
        """max_delay below base_delay is rejected."""
        with pytest.raises(ValidationError):
            EngineConfig(base_delay=5.0, max_delay=1.0)


class TestBackoff:
    """Tests for the retry delay schedule."""

    def test_exponential(self) -> None:
        """Delays grow by the multiplier per attempt."""
        config = EngineConfig(base_delay=0.5, backoff_multiplier=2.0, max_delay=30.0)
        assert [config.backoff_delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]

    def test_capped(self) -> None:
        """Delays never exceed max_delay."""
        config = EngineConfig(base_delay=1.0, backoff_multiplier=10.0, max_delay=5.0)
        assert config.backoff_delay(3) == 5.0
