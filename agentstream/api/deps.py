"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

from fastapi import Request

from agentstream.agent.runner import AgentRunner
from agentstream.core.config.schema import Config


def get_config(request: Request) -> Config:
    """Get Config singleton from app state."""
    return request.app.state.config


def get_runner(request: Request) -> AgentRunner:
    """Get AgentRunner singleton from app state."""
    return request.app.state.runner
