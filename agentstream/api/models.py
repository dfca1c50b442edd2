"""Pydantic request / response models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from agentstream.agent.messages import InboundMessage
from agentstream.core.config.schema import DecisionMode, RequestCredentials


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat`` and ``POST /api/agents``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: list[InboundMessage]
    locale: str = ""
    preview_token: RequestCredentials = Field(
        default_factory=RequestCredentials, alias="previewToken"
    )
    no_stream: bool = False
    mode: DecisionMode | None = None


class IntermediateStep(BaseModel):
    tool: str
    tool_input: str
    observation: str


class RunResponse(BaseModel):
    output: str
    intermediate_steps: list[IntermediateStep] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    version: str = ""
    model: str = ""
