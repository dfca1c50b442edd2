"""Web search tools — Bing, Google Custom Search and Tavily over httpx."""

from __future__ import annotations

import re
from typing import Any, ClassVar

import httpx
from langchain_core.tools import BaseTool
from loguru import logger
from pydantic import BaseModel, Field

from agentstream.agent.tools.formatting import (
    NO_RESULTS,
    SearchResult,
    format_results,
    render_snippet,
)
from agentstream.core.errors import ToolError

SEARCH_TIMEOUT = 10
USER_AGENT = "agentstream/1.0"

BING_URL = "https://api.bing.microsoft.com/v7.0/search"
GOOGLE_URL = "https://www.googleapis.com/customsearch/v1"
TAVILY_URL = "https://api.tavily.com/search"

SEARCH_DESCRIPTION = (
    "a search engine. useful for when you need to answer questions about "
    "current events. input should be a search query."
)


class SearchInput(BaseModel):
    query: str = Field(description="Search query string")


class SearchTool(BaseTool):
    """Base class for search providers.

    Subclasses implement ``fetch`` and return the parsed hits; this class owns
    the HTTP client, error mapping and result rendering. Transport failures
    raise ``ToolError``; an empty hit list returns ``NO_RESULTS``.
    """

    description: str = SEARCH_DESCRIPTION
    args_schema: type[BaseModel] = SearchInput
    api_key: str = Field(default="", repr=False)
    max_results: int = 5
    timeout: float = SEARCH_TIMEOUT

    # Providers whose text carries inline citation markers set this
    citation_pattern: ClassVar[re.Pattern[str] | None] = None

    async def fetch(self, client: httpx.AsyncClient, query: str) -> list[SearchResult]:
        raise NotImplementedError

    async def _arun(self, query: str) -> str:
        async with httpx.AsyncClient(
            timeout=self.timeout, headers={"User-Agent": USER_AGENT}
        ) as client:
            try:
                results = await self.fetch(client, query)
            except httpx.HTTPStatusError as e:
                logger.error(f"{self.name} HTTP {e.response.status_code} for {query!r}")
                raise ToolError(self.name, f"HTTP error {e.response.status_code}") from e
            except httpx.HTTPError as e:
                logger.error(f"{self.name} request failed: {e}")
                raise ToolError(self.name, e) from e
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"{self.name} malformed payload: {e}")
                raise ToolError(self.name, f"malformed payload: {e}") from e

        if not results:
            logger.debug(f"{self.name} query={query!r} → no results")
            return NO_RESULTS
        logger.debug(f"{self.name} query={query!r} → {len(results)} results")
        return format_results(results)

    def _run(self, query: str) -> str:
        raise NotImplementedError(f"{self.name} is async-only, use ainvoke()")


class BingSearch(SearchTool):
    """Bing Web Search API v7."""

    name: str = "bing-search"

    async def fetch(self, client: httpx.AsyncClient, query: str) -> list[SearchResult]:
        resp = await client.get(
            BING_URL,
            params={
                "q": query,
                "count": self.max_results,
                "textDecorations": "true",
                "textFormat": "HTML",
            },
            headers={"Ocp-Apim-Subscription-Key": self.api_key},
        )
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        items = data.get("webPages", {}).get("value", [])
        return [
            SearchResult(render_snippet(item["snippet"]), item["url"])
            for item in items[: self.max_results]
        ]


class GoogleSearch(SearchTool):
    """Google Custom Search JSON API."""

    name: str = "google-search"
    cse_id: str = ""

    async def fetch(self, client: httpx.AsyncClient, query: str) -> list[SearchResult]:
        resp = await client.get(
            GOOGLE_URL,
            params={
                "key": self.api_key,
                "cx": self.cse_id,
                "q": query,
                "num": min(self.max_results, 10),
            },
        )
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        items = data.get("items", [])
        return [
            SearchResult(
                render_snippet(item.get("htmlSnippet") or item["snippet"]),
                item["link"],
            )
            for item in items[: self.max_results]
        ]


class TavilySearch(SearchTool):
    """Tavily search API (AI-optimized results)."""

    name: str = "tavily-search"

    # Tavily content often keeps reference markers such as "[3]"
    citation_pattern: ClassVar[re.Pattern[str] | None] = re.compile(r"\[\d+\](?!\()")

    async def fetch(self, client: httpx.AsyncClient, query: str) -> list[SearchResult]:
        resp = await client.post(
            TAVILY_URL,
            json={
                "api_key": self.api_key,
                "query": query,
                "max_results": min(self.max_results, 10),
                "search_depth": "basic",
            },
        )
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        return [
            SearchResult(render_snippet(item["content"]), item["url"])
            for item in data.get("results", [])[: self.max_results]
        ]
