"""ToolGate: access-control gateway for tool calls."""

__version__ = "0.1.0"
