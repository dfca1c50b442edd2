"""Trace events emitted by the agent loop and the multiplexer that turns them into text."""

from __future__ import annotations

import re
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any, Union

TOOL_DELIMITER = "\n\n---\n\n"
TOOL_START = "tool_start"

_TOOL_BLOCK = re.compile(
    re.escape(TOOL_DELIMITER) + r"(.*?)" + re.escape(TOOL_DELIMITER), re.DOTALL
)


@dataclass(frozen=True)
class ModelToken:
    """One streamed chunk of model output.

    ``producer`` identifies the model invocation that produced it
    (``reason:<iteration>``).
    """

    producer: str
    text: str


@dataclass(frozen=True)
class ToolResult:
    """Final output of one tool invocation."""

    tool: str
    output: str
    query: str = ""


@dataclass(frozen=True)
class Other:
    """Loop bookkeeping that is not part of the reply (e.g. a tool starting)."""

    kind: str
    value: Any = None


TraceEvent = Union[ModelToken, ToolResult, Other]


def wrap_tool_output(output: str, citation_pattern: re.Pattern[str] | None = None) -> str:
    """Strip citation markers (if the provider has any) and frame the output."""
    if citation_pattern is not None:
        output = citation_pattern.sub("", output)
    return f"{TOOL_DELIMITER}{output}{TOOL_DELIMITER}"


def unwrap_tool_blocks(text: str) -> list[str]:
    """Return the tool outputs framed in a multiplexed stream, in order."""
    return _TOOL_BLOCK.findall(text)


async def multiplex(
    events: AsyncIterable[TraceEvent],
    citation_patterns: dict[str, re.Pattern[str]] | None = None,
    dedupe: bool = True,
) -> AsyncIterator[str]:
    """Project the loop's trace onto one ordered text stream.

    - ``ModelToken`` with text is forwarded as-is, except when it repeats the
      last chunk forwarded for the same producer (``dedupe``).
    - ``ToolResult`` is wrapped between ``---`` rules.
    - Anything else is dropped.

    Output ends when ``events`` is exhausted.
    """
    patterns = citation_patterns or {}
    last: dict[str, str] = {}

    async for event in events:
        if isinstance(event, ModelToken):
            if not event.text:
                continue
            if dedupe and last.get(event.producer) == event.text:
                continue
            last[event.producer] = event.text
            yield event.text
        elif isinstance(event, ToolResult):
            yield wrap_tool_output(event.output, patterns.get(event.tool))
