"""Direct-answer path — no tools, no loop, tokens straight through."""

from __future__ import annotations

from collections.abc import AsyncIterator

from langchain_core.messages import BaseMessage
from loguru import logger

from agentstream.agent.messages import pair_tool_turns, to_wire
from agentstream.core.config.schema import RequestSettings
from agentstream.core.providers import litellm as llm_provider


async def answer(messages: list[BaseMessage], settings: RequestSettings) -> AsyncIterator[str]:
    """Stream the model's reply to the whole conversation, chunk by chunk."""
    wire = [to_wire(m) for m in pair_tool_turns(messages)]
    logger.debug(f"Direct answer: {len(wire)} messages → {settings.model}")
    async for chunk in llm_provider.astream_text(
        wire, settings, temperature=settings.temperature
    ):
        yield chunk


async def answer_once(messages: list[BaseMessage], settings: RequestSettings) -> str:
    """Non-streaming variant of ``answer``."""
    wire = [to_wire(m) for m in pair_tool_turns(messages)]
    ai_message = await llm_provider.achat(wire, settings, temperature=settings.temperature)
    return ai_message.content or ""
