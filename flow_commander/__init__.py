"""flow-commander - plan/execute orchestration for CLI coding agents."""

__version__ = "0.1.0"
__logo__ = "flow-commander"
