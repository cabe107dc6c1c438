"""Configuration schema for flow-commander."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_ITERATION_CHOICES: tuple[Optional[int], ...] = (1, 3, 5, 10, None)


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CLIAgentConfig(_Section):
    """Configuration for one CLI agent binary."""

    command: str = ""


class AgentsConfig(_Section):
    """Per-agent command overrides."""

    claude: CLIAgentConfig = Field(default_factory=CLIAgentConfig)
    gemini: CLIAgentConfig = Field(default_factory=CLIAgentConfig)
    codex: CLIAgentConfig = Field(default_factory=CLIAgentConfig)


class ModelsConfig(_Section):
    """Which agent plans and which executes."""

    planning: str = "codex"
    execution: str = "codex"

    @field_validator("planning", "execution")
    @classmethod
    def _known_agent(cls, value: str) -> str:
        from flow_commander.providers.agent_registry import AGENT_DEFS

        key = (value or "").strip().lower()
        if key not in AGENT_DEFS:
            raise ValueError(f"unknown agent '{value}' (expected one of: {', '.join(sorted(AGENT_DEFS))})")
        return key


class FlowConfig(_Section):
    """Cycle limit, retries and polling."""

    max_iterations: Optional[int] = 5
    retry_limit: int = Field(default=3, ge=1)
    backoff_base_s: float = Field(default=5.0, ge=0)
    backoff_cap_s: float = Field(default=60.0, ge=0)
    poll_interval_s: float = Field(default=0.1, gt=0, le=0.2)

    @field_validator("max_iterations")
    @classmethod
    def _positive_or_unlimited(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("max_iterations must be >= 1 (or null for unlimited)")
        return value

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "FlowConfig":
        if self.backoff_cap_s < self.backoff_base_s:
            self.backoff_cap_s = self.backoff_base_s
        return self


class LoggingConfig(_Section):
    level: str = "WARNING"
    file: str = ".flow-commander/logs/flow-commander.log"


class Config(BaseSettings):
    """Root configuration for flow-commander."""

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    flow: FlowConfig = Field(default_factory=FlowConfig)
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_agent_config(self, name: str) -> CLIAgentConfig | None:
        """Get agent-specific configuration by key."""
        key = (name or "").strip().lower()
        value = getattr(self.agents, key, None)
        return value if isinstance(value, CLIAgentConfig) else None

    def log_path(self, workdir: Path) -> Path:
        path = Path(self.logging.file).expanduser()
        return path if path.is_absolute() else workdir / path

    model_config = SettingsConfigDict(
        env_prefix="FLOW_COMMANDER_",
        env_nested_delimiter="__",
        extra="ignore",
    )


def next_max_iterations(current: Optional[int]) -> Optional[int]:
    """Cycle 1 -> 3 -> 5 -> 10 -> unlimited -> 1."""
    if current in MAX_ITERATION_CHOICES:
        idx = MAX_ITERATION_CHOICES.index(current)
        return MAX_ITERATION_CHOICES[(idx + 1) % len(MAX_ITERATION_CHOICES)]
    return MAX_ITERATION_CHOICES[0]


def format_max_iterations(value: Optional[int]) -> str:
    return "Unlimited" if value is None else str(value)
