"""Core API routes — chat, agents, health."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from loguru import logger

from agentstream import __version__
from agentstream.agent.messages import normalize_all
from agentstream.agent.runner import AgentRunner
from agentstream.api.deps import get_config, get_runner
from agentstream.api.models import (
    ChatRequest,
    HealthResponse,
    IntermediateStep,
    RunResponse,
)
from agentstream.core.config.schema import Config, RequestSettings
from agentstream.core.errors import AgentStreamError
from agentstream.core.streaming import sink_stream

router = APIRouter()

TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"


@router.post("/api/chat")
async def chat(
    body: ChatRequest,
    runner: AgentRunner = Depends(get_runner),
    config: Config = Depends(get_config),
):
    """Answer directly, or run the agent loop when the latest turn asks for it."""
    return await _respond(body, runner, config, agent=None)


@router.post("/api/agents")
async def agents(
    body: ChatRequest,
    runner: AgentRunner = Depends(get_runner),
    config: Config = Depends(get_config),
):
    """Always run the agent loop."""
    return await _respond(body, runner, config, agent=True)


@router.get("/health", response_model=HealthResponse)
async def health(config: Config = Depends(get_config)):
    """Health check."""
    return HealthResponse(status="ok", version=__version__, model=config.llm.model)


async def _respond(
    body: ChatRequest,
    runner: AgentRunner,
    config: Config,
    agent: bool | None,
):
    try:
        messages = normalize_all(body.messages)
        settings = RequestSettings.from_request(
            config, body.preview_token, locale=body.locale, mode=body.mode
        )
        use_agent = runner.wants_agent(messages) if agent is None else agent
        logger.debug(
            f"Chat request: {len(messages)} messages, "
            f"path={'agent' if use_agent else 'direct'}, stream={not body.no_stream}"
        )

        if body.no_stream:
            result = await runner.run(messages, settings, agent=use_agent)
            return RunResponse(
                output=result.output,
                intermediate_steps=[IntermediateStep(**s) for s in result.intermediate_steps],
            )

        # Produce the first chunk before answering, so failures that happen
        # before any output still get a proper status code
        chunks = sink_stream(runner.stream(messages, settings, agent=use_agent))
        first = await _first_chunk(chunks)
    except AgentStreamError as e:
        logger.error(f"Chat error: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return StreamingResponse(_relay(first, chunks), media_type=TEXT_MEDIA_TYPE)


async def _first_chunk(chunks: AsyncIterator[str]) -> str | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


async def _relay(first: str | None, chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """Send the primed chunk, then the rest; errors after that truncate the stream."""
    if first is None:
        return
    yield first
    try:
        async for chunk in chunks:
            yield chunk
    except AgentStreamError as e:
        logger.error(f"Stream aborted after partial output: {e}")
    finally:
        await chunks.aclose()
