"""CLI agent definitions, lookup and invocation."""

from flow_commander.providers.agent_registry import AGENT_DEFS, AgentDef, get_agent_def
from flow_commander.providers.invoker import InvocationMode, ToolInvoker, ToolOutcome

__all__ = [
    "AGENT_DEFS",
    "AgentDef",
    "InvocationMode",
    "ToolInvoker",
    "ToolOutcome",
    "get_agent_def",
]
