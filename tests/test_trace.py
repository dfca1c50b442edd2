"""Tests for agentstream.agent.trace — the trace multiplexer."""

import re

from agentstream.agent.trace import (
    TOOL_DELIMITER,
    ModelToken,
    Other,
    ToolResult,
    multiplex,
    unwrap_tool_blocks,
    wrap_tool_output,
)


async def _events(*items):
    for item in items:
        yield item


async def _collect(events, **kwargs):
    return [chunk async for chunk in multiplex(events, **kwargs)]


async def test_tokens_forwarded_in_order():
    out = await _collect(_events(ModelToken("reason:1", "Hel"), ModelToken("reason:1", "lo")))
    assert out == ["Hel", "lo"]


async def test_tool_result_wrapped():
    out = await _collect(_events(ToolResult("search", "[a](http://a)")))
    assert out == [f"{TOOL_DELIMITER}[a](http://a){TOOL_DELIMITER}"]


async def test_other_events_dropped():
    out = await _collect(_events(Other("chain_start"), ModelToken("reason:1", "x"), Other("end", 1)))
    assert out == ["x"]


async def test_empty_tokens_dropped():
    out = await _collect(_events(ModelToken("reason:1", ""), ModelToken("reason:1", "a")))
    assert out == ["a"]


async def test_dedupe_same_producer():
    out = await _collect(_events(
        ModelToken("reason:1", "the"),
        ModelToken("reason:1", "the"),
        ModelToken("reason:1", " end"),
    ))
    assert out == ["the", " end"]


async def test_dedupe_is_per_producer():
    out = await _collect(_events(ModelToken("reason:1", "ok"), ModelToken("reason:2", "ok")))
    assert out == ["ok", "ok"]


async def test_dedupe_disabled():
    out = await _collect(
        _events(ModelToken("reason:1", "a"), ModelToken("reason:1", "a")), dedupe=False
    )
    assert out == ["a", "a"]


async def test_citations_stripped_for_matching_tool_only():
    pattern = re.compile(r"\[\d+\](?!\()")
    out = await _collect(
        _events(
            ToolResult("tavily-search", "[Istanbul is sunny [1]](http://w)"),
            ToolResult("bing-search", "[Rates [2]](http://r)"),
        ),
        citation_patterns={"tavily-search": pattern},
    )
    assert unwrap_tool_blocks("".join(out)) == [
        "[Istanbul is sunny ](http://w)",
        "[Rates [2]](http://r)",
    ]


async def test_tokens_and_tools_interleave_in_production_order():
    out = await _collect(_events(
        ModelToken("reason:1", "Let me check."),
        ToolResult("search", "No good results found."),
        ModelToken("reason:2", "Nothing found."),
    ))
    text = "".join(out)
    assert text.index("Let me check.") < text.index("No good results") < text.index("Nothing found.")
    assert unwrap_tool_blocks(text) == ["No good results found."]


async def test_no_events_no_output():
    assert await _collect(_events()) == []


def test_wrap_and_unwrap():
    text = "intro" + wrap_tool_output("one") + "middle" + wrap_tool_output("two")
    assert unwrap_tool_blocks(text) == ["one", "two"]
