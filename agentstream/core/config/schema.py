"""agentstream configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentstream.core.errors import ConfigError

DecisionMode = Literal["function_call", "text"]
SearchProvider = Literal["bing", "google", "tavily"]


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class LLMConfig(BaseModel):
    """Chat-completion defaults (overridable per request via previewToken)."""

    model: str = "gpt-3.5-turbo-0125"
    api_key: str = ""
    api_base: str = "https://api.openai.com/v1"
    provider_prefix: str = "openai"
    temperature: float = 0.6
    agent_temperature: float = 0.2
    max_tokens: int = 2048
    timeout: float = 120.0


class SearchConfig(BaseModel):
    """Search providers. Server-side keys are used only when the request has none."""

    bing_api_key: str = ""
    google_api_key: str = ""
    google_cse_id: str = ""
    tavily_api_key: str = ""
    priority: list[SearchProvider] = Field(
        default_factory=lambda: ["bing", "google", "tavily"]
    )
    max_results: int = 5
    timeout: float = 10.0

    @field_validator("priority")
    @classmethod
    def _unique_priority(cls, value: list[str]) -> list[str]:
        # first mention wins
        return list(dict.fromkeys(value))


class AgentConfig(BaseModel):
    """Agent loop behaviour."""

    decision: DecisionMode = "function_call"
    max_iterations: int = 10
    include_history: bool = True
    react_marker: str = "[//]: (ReAct)"
    # Strategy for turns routed by react_marker when the request sets no mode
    marker_decision: DecisionMode = "text"
    give_up_message: str = (
        "I could not finish this request within the allowed number of steps."
    )


class StreamConfig(BaseModel):
    """Trace multiplexer output."""

    dedupe_tokens: bool = True


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        AGENTSTREAM_LLM__MODEL=gpt-4o-mini
        AGENTSTREAM_SEARCH__TAVILY_API_KEY=tvly-...
        AGENTSTREAM_AGENT__MAX_ITERATIONS=6
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTSTREAM_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Env beats the YAML values passed in as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings


# ════════════════════════════════════════════════════════════
# PER-REQUEST SETTINGS
# ════════════════════════════════════════════════════════════


class RequestCredentials(BaseModel):
    """Credentials carried in the request body (``previewToken``)."""

    llm_api_key: str = ""
    llm_base_url: str | None = None
    llm_model: str | None = None
    search_api_key: str = ""
    bing_api_key: str = ""
    google_api_key: str = ""
    google_cse_id: str = ""


class RequestSettings(BaseModel):
    """Immutable settings for one request: server defaults merged with request credentials.

    Passed by value into every component instead of being written to the
    process environment, so concurrent requests never see each other's keys.
    """

    model_config = {"frozen": True}

    model: str
    api_key: str
    api_base: str | None = None
    temperature: float = 0.6
    agent_temperature: float = 0.2
    max_tokens: int = 2048
    timeout: float = 120.0
    locale: str = ""
    decision: DecisionMode = "function_call"
    mode: DecisionMode | None = None
    credentials: RequestCredentials = Field(default_factory=RequestCredentials)

    @classmethod
    def from_request(
        cls,
        config: Config,
        credentials: RequestCredentials | None = None,
        locale: str | None = None,
        mode: str | None = None,
    ) -> RequestSettings:
        """Merge request credentials over server defaults.

        Raises
        ------
        ConfigError
            No LLM API key in either the request or the server config, or an
            unknown decision mode.
        """
        creds = credentials or RequestCredentials()
        api_key = creds.llm_api_key or config.llm.api_key
        if not api_key:
            raise ConfigError("Missing LLM API key (previewToken.llm_api_key)")

        decision = mode or config.agent.decision
        if decision not in ("function_call", "text"):
            raise ConfigError(
                f"Unknown agent mode '{decision}' (expected 'function_call' or 'text')"
            )

        return cls(
            model=qualify_model(
                creds.llm_model or config.llm.model, config.llm.provider_prefix
            ),
            api_key=api_key,
            api_base=creds.llm_base_url or config.llm.api_base or None,
            temperature=config.llm.temperature,
            agent_temperature=config.llm.agent_temperature,
            max_tokens=config.llm.max_tokens,
            timeout=config.llm.timeout,
            locale=locale or "",
            decision=decision,
            mode=mode or None,
            credentials=creds,
        )


def qualify_model(model: str, prefix: str) -> str:
    """Prefix model names so LiteLLM sends them to the OpenAI-compatible ``api_base``.

    ``gpt-4o`` → ``openai/gpt-4o``; ``meta-llama/Llama-3`` →
    ``openai/meta-llama/Llama-3``; already-prefixed names are kept.
    """
    if not prefix or model.startswith(f"{prefix}/"):
        return model
    return f"{prefix}/{model}"
