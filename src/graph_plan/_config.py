"""
Engine configuration.

`EngineConfig` is an immutable settings object read from environment
variables prefixed with ``GRAPH_PLAN_``. One instance is passed to the
`Planner` and the `Executor` when they are constructed.

Example:
    Overriding settings in code or from the environment::

        from graph_plan import EngineConfig

        config = EngineConfig(max_workers=4, context={"region": "eu-west-1"})

        # GRAPH_PLAN_MAX_ATTEMPTS=8 GRAPH_PLAN_CONTEXT='{"region": "us-east-1"}'
        config = EngineConfig()
"""

from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["EngineConfig"]


class EngineConfig(BaseSettings):
    """Settings shared by the planner and the executor."""

    model_config = SettingsConfigDict(env_prefix="GRAPH_PLAN_", frozen=True)

    # Executor worker pool
    max_workers: int = Field(default=8, ge=1)

    # Retry of transient provider failures
    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    state_path: Path = Path("graph-plan.state.json")

    log_level: str = "INFO"
    log_json: bool = False

    # Values for ContextRef, e.g. {"region": "eu-west-1"}
    context: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_delays(self) -> "EngineConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given failed attempt (1-based)."""
        delay = self.base_delay * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_delay)
