"""Read-only run inputs handed to the engine at start."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from flow_commander.core.retry import RetryPolicy
from flow_commander.providers.agent_registry import DEFAULT_AGENT

if TYPE_CHECKING:
    from flow_commander.config.schema import Config

DEFAULT_MAX_ITERATIONS = 5


@dataclass(frozen=True)
class RunSettings:
    """Models, cycle limit and retry policy for one run."""

    planning_model: str = DEFAULT_AGENT
    execution_model: str = DEFAULT_AGENT
    max_iterations: Optional[int] = DEFAULT_MAX_ITERATIONS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll_interval_s: float = 0.1

    def __post_init__(self) -> None:
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1 or None")

    @classmethod
    def from_config(cls, config: "Config") -> "RunSettings":
        flow = config.flow
        return cls(
            planning_model=config.models.planning,
            execution_model=config.models.execution,
            max_iterations=flow.max_iterations,
            retry=RetryPolicy(
                retry_limit=flow.retry_limit,
                base_s=flow.backoff_base_s,
                cap_s=flow.backoff_cap_s,
            ),
            poll_interval_s=flow.poll_interval_s,
        )
