"""Error types shared by the agent, providers and API layer."""

from __future__ import annotations


class AgentStreamError(Exception):
    """Base exception for all agentstream errors."""

    status_code: int = 500


class ConfigError(AgentStreamError):
    """Raised when a required credential or setting is missing or invalid."""

    status_code = 400


class ProviderError(AgentStreamError):
    """Raised when a model call fails at the transport or HTTP level."""

    status_code = 502


class ToolError(ProviderError):
    """Raised when a search tool cannot complete a query."""

    def __init__(self, tool: str, cause: Exception | str):
        self.tool = tool
        self.cause = cause
        super().__init__(f"Tool '{tool}' failed: {cause}")


class ParseError(AgentStreamError):
    """Raised when the loop expects a tool call the last message does not carry."""

    status_code = 502


class ToolNotFound(AgentStreamError):
    """Raised when the model requests a tool that is not configured."""

    status_code = 422

    def __init__(self, name: str, available: list[str] | None = None):
        self.name = name
        self.available = list(available or [])
        known = ", ".join(self.available) if self.available else "none"
        super().__init__(f"Tool '{name}' not found (configured: {known})")
