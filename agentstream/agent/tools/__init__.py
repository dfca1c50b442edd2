"""Tool system — per-request search provider selection."""

from __future__ import annotations

import re

from langchain_core.tools import BaseTool
from loguru import logger

from agentstream.agent.tools.web import BingSearch, GoogleSearch, SearchTool, TavilySearch
from agentstream.core.config.schema import (
    Config,
    RequestCredentials,
    RequestSettings,
    SearchConfig,
)


def _request_keys(creds: RequestCredentials) -> dict[str, tuple[str, str]]:
    return {
        "bing": (creds.bing_api_key, ""),
        "google": (creds.google_api_key, creds.google_cse_id),
        "tavily": (creds.search_api_key, ""),
    }


def _server_keys(search: SearchConfig) -> dict[str, tuple[str, str]]:
    return {
        "bing": (search.bing_api_key, ""),
        "google": (search.google_api_key, search.google_cse_id),
        "tavily": (search.tavily_api_key, ""),
    }


def _build(provider: str, key: str, extra: str, search: SearchConfig) -> SearchTool | None:
    common = {"api_key": key, "max_results": search.max_results, "timeout": search.timeout}
    if provider == "bing":
        return BingSearch(**common)
    if provider == "google":
        # Custom Search needs both the API key and the engine id
        return GoogleSearch(cse_id=extra, **common) if extra else None
    if provider == "tavily":
        return TavilySearch(**common)
    return None


def select_tools(settings: RequestSettings, config: Config) -> list[BaseTool]:
    """Pick exactly one search provider for this request.

    Request credentials win over server defaults. Within each source the first
    provider in ``config.search.priority`` that has a credential is chosen
    (default order: bing → google → tavily). Returns an empty list when no
    search credential exists at all.
    """
    sources = (
        ("request", _request_keys(settings.credentials)),
        ("server", _server_keys(config.search)),
    )
    for source, keys in sources:
        for provider in config.search.priority:
            key, extra = keys.get(provider, ("", ""))
            if not key:
                continue
            tool = _build(provider, key, extra, config.search)
            if tool is not None:
                logger.debug(f"Search provider: {tool.name} (credentials from {source})")
                return [tool]

    logger.debug("No search credentials, agent runs without tools")
    return []


def citation_patterns(tools: list[BaseTool]) -> dict[str, re.Pattern[str]]:
    """Tool name → citation marker regex for tools that declare one."""
    return {
        t.name: t.citation_pattern
        for t in tools
        if getattr(t, "citation_pattern", None) is not None
    }


__all__ = [
    "BingSearch",
    "GoogleSearch",
    "SearchTool",
    "TavilySearch",
    "citation_patterns",
    "select_tools",
]
