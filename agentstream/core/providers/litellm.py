"""LiteLLM provider — thin wrapper that returns LangChain AIMessage.

Every call takes an explicit ``RequestSettings`` (api key, base url, model) so
nothing is read from or written to the process environment.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import litellm
from langchain_core.messages import AIMessage
from loguru import logger

from agentstream.core.config.schema import RequestSettings
from agentstream.core.errors import ProviderError

# Suppress litellm noise
litellm.suppress_debug_info = True

TokenCallback = Callable[[str], None]


def _completion_kwargs(
    messages: list[dict[str, Any]],
    settings: RequestSettings,
    tools: list[dict[str, Any]] | None,
    temperature: float | None,
    stream: bool,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": settings.model,
        "messages": messages,
        "temperature": settings.temperature if temperature is None else temperature,
        "max_tokens": settings.max_tokens,
        "api_key": settings.api_key,
        "timeout": settings.timeout,
        "stream": stream,
    }
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"
    if settings.api_base:
        kwargs["api_base"] = settings.api_base
    return kwargs


async def achat(
    messages: list[dict[str, Any]],
    settings: RequestSettings,
    tools: list[dict[str, Any]] | None = None,
    temperature: float | None = None,
) -> AIMessage:
    """Call LiteLLM once (no streaming) and return a LangChain AIMessage."""
    kwargs = _completion_kwargs(messages, settings, tools, temperature, stream=False)
    try:
        response = await litellm.acompletion(**kwargs)
    except Exception as e:
        logger.error(f"LLM error ({settings.model}): {e}")
        raise ProviderError(f"Error calling LLM: {e}") from e
    return _to_ai_message(response)


async def astream_text(
    messages: list[dict[str, Any]],
    settings: RequestSettings,
    temperature: float | None = None,
) -> AsyncIterator[str]:
    """Stream a completion and yield each non-empty text delta in arrival order."""
    kwargs = _completion_kwargs(messages, settings, None, temperature, stream=True)
    try:
        response = await litellm.acompletion(**kwargs)
        async for chunk in response:
            if not chunk.choices:
                continue
            text = getattr(chunk.choices[0].delta, "content", None)
            if text:
                yield text
    except ProviderError:
        raise
    except Exception as e:
        logger.error(f"LLM stream error ({settings.model}): {e}")
        raise ProviderError(f"Error calling LLM: {e}") from e


async def astream_chat(
    messages: list[dict[str, Any]],
    settings: RequestSettings,
    tools: list[dict[str, Any]] | None = None,
    temperature: float | None = None,
    on_token: TokenCallback | None = None,
) -> AIMessage:
    """Stream a completion, report text deltas to ``on_token``, return the assembled AIMessage.

    Tool-call deltas are accumulated by their ``index`` and decoded once the
    stream ends.
    """
    kwargs = _completion_kwargs(messages, settings, tools, temperature, stream=True)
    content: list[str] = []
    calls: dict[int, dict[str, str]] = {}
    finish_reason = "stop"

    try:
        response = await litellm.acompletion(**kwargs)
        async for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            if getattr(choice, "finish_reason", None):
                finish_reason = choice.finish_reason
            delta = choice.delta

            text = getattr(delta, "content", None)
            if text:
                content.append(text)
                if on_token is not None:
                    on_token(text)

            for tc in getattr(delta, "tool_calls", None) or []:
                slot = calls.setdefault(
                    getattr(tc, "index", None) or 0,
                    {"id": "", "name": "", "arguments": ""},
                )
                if getattr(tc, "id", None):
                    slot["id"] = tc.id
                fn = getattr(tc, "function", None)
                if fn is not None:
                    if getattr(fn, "name", None):
                        slot["name"] += fn.name
                    if getattr(fn, "arguments", None):
                        slot["arguments"] += fn.arguments
    except Exception as e:
        logger.error(f"LLM stream error ({settings.model}): {e}")
        raise ProviderError(f"Error calling LLM: {e}") from e

    tool_calls = [
        {
            "id": slot["id"] or f"call_{index}",
            "name": slot["name"],
            "args": _decode_args(slot["arguments"]),
        }
        for index, slot in sorted(calls.items())
        if slot["name"]
    ]
    return AIMessage(
        content="".join(content),
        tool_calls=tool_calls,
        response_metadata={"finish_reason": finish_reason},
    )


def _to_ai_message(response: Any) -> AIMessage:
    """Convert litellm response → LangChain AIMessage."""
    choice = response.choices[0]
    msg = choice.message

    tool_calls = []
    if getattr(msg, "tool_calls", None):
        for tc in msg.tool_calls:
            tool_calls.append(
                {
                    "id": tc.id,
                    "name": tc.function.name,
                    "args": _decode_args(tc.function.arguments),
                }
            )

    usage = getattr(response, "usage", None)
    return AIMessage(
        content=msg.content or "",
        tool_calls=tool_calls,
        response_metadata={
            "finish_reason": choice.finish_reason or "stop",
            "usage": {
                "prompt_tokens": getattr(usage, "prompt_tokens", 0),
                "completion_tokens": getattr(usage, "completion_tokens", 0),
                "total_tokens": getattr(usage, "total_tokens", 0),
            },
        },
    )


def _decode_args(args: Any) -> dict[str, Any]:
    """Decode function-call arguments; non-JSON text becomes ``{"query": text}``."""
    if isinstance(args, dict):
        return args
    if not args:
        return {}
    try:
        decoded = json.loads(args)
    except json.JSONDecodeError:
        return {"query": str(args)}
    return decoded if isinstance(decoded, dict) else {"query": str(decoded)}
