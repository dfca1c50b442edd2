"""Tests for the agent loop — graph, nodes, runner."""

from unittest.mock import patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage
from langchain_core.tools import tool

from agentstream.agent.graph import recursion_limit
from agentstream.agent.messages import normalize_all
from agentstream.agent.runner import AgentRunner
from agentstream.agent.tools.formatting import NO_RESULTS
from agentstream.agent.trace import TOOL_START, Other, unwrap_tool_blocks
from agentstream.core.config import Config, RequestSettings
from agentstream.core.errors import ProviderError, ToolError, ToolNotFound
from tests.fakes import RecordingSearch, scripted_llm, text_stream, tool_call_reply

CHAT = "agentstream.agent.nodes.llm_provider.astream_chat"
TEXT = "agentstream.agent.direct.llm_provider.astream_text"
SELECT = "agentstream.agent.runner.select_tools"

MARKER = "[//]: (ReAct)"


@pytest.fixture
def config():
    return Config(llm={"api_key": "sk-test"})


@pytest.fixture
def settings(config):
    return RequestSettings.from_request(config)


def _user(text):
    return normalize_all([{"role": "user", "content": text}])


async def _stream(runner, messages, settings, agent=True):
    return "".join([c async for c in runner.stream(messages, settings, agent=agent)])


# ── function-call loop ────────────────────────────────────


async def test_tool_invoked_once_then_answer(config, settings):
    search = RecordingSearch(answer="[Sunny, 24°C](http://weather)")
    llm = scripted_llm(
        tool_call_reply("search", "istanbul weather"),
        AIMessage(content="It is sunny in Istanbul."),
    )
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        text = await _stream(runner, _user("weather in istanbul?"), settings)

    assert search.queries == ["istanbul weather"]
    assert unwrap_tool_blocks(text) == ["[Sunny, 24°C](http://weather)"]
    assert text.endswith("It is sunny in Istanbul.")
    assert llm.await_count == 2

    # second model call sees the tool observation
    second = llm.call_args_list[1].kwargs["messages"]
    assert second[-1]["role"] == "tool"
    assert second[-1]["content"] == "[Sunny, 24°C](http://weather)"


async def test_no_results_sentinel_single_block(config, settings):
    search = RecordingSearch(answer=NO_RESULTS)
    llm = scripted_llm(
        tool_call_reply("search", "asdkjhqwe"),
        AIMessage(content="I could not find anything."),
    )
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        text = await _stream(runner, _user("asdkjhqwe?"), settings)

    assert unwrap_tool_blocks(text) == [NO_RESULTS]
    assert text.count(NO_RESULTS) == 1


async def test_tools_bound_for_function_calling(config, settings):
    search = RecordingSearch()
    llm = scripted_llm(AIMessage(content="No search needed."))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        text = await _stream(runner, _user("hi"), settings)

    assert text == "No search needed."
    tools = llm.call_args.kwargs["tools"]
    assert tools[0]["function"]["name"] == "search"
    assert llm.call_args.kwargs["temperature"] == settings.agent_temperature
    assert search.queries == []


async def test_dedupes_repeated_chunks(config, settings):
    llm = scripted_llm(AIMessage(content="okok"), pieces=2)
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[]):
        text = await _stream(runner, _user("hi"), settings)

    assert text == "ok"


async def test_unknown_tool_from_model(config, settings):
    search = RecordingSearch()
    llm = scripted_llm(tool_call_reply("calculator", "1+1"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        with pytest.raises(ToolNotFound) as exc:
            await _stream(runner, _user("1+1?"), settings)

    assert exc.value.status_code == 422
    assert search.queries == []


async def test_unknown_inbound_function_call_fails_before_model(config, settings):
    search = RecordingSearch()
    llm = scripted_llm(AIMessage(content="unused"))
    messages = normalize_all([
        {"role": "user", "content": "what is 1+1?"},
        {"role": "assistant", "content": "", "functionCall": {"name": "calculator", "arguments": "1+1"}},
    ])
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        with pytest.raises(ToolNotFound):
            await runner.run(messages, settings)

    assert llm.await_count == 0
    assert search.queries == []


async def test_inbound_function_call_runs_tool_first(config, settings):
    search = RecordingSearch(answer="[Headline](http://news)")
    llm = scripted_llm(AIMessage(content="Here is the news."))
    messages = normalize_all([
        {"role": "user", "content": "news?"},
        {"role": "assistant", "content": "", "functionCall": {"name": "search", "arguments": '{"query": "news"}'}},
    ])
    runner = AgentRunner(config)
    assert runner.wants_agent(messages)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        result = await runner.run(messages, settings)

    assert search.queries == ["news"]
    assert llm.await_count == 1
    assert result.output == "Here is the news."
    assert result.intermediate_steps == [
        {"tool": "search", "tool_input": "news", "observation": "[Headline](http://news)"}
    ]


async def test_give_up_at_iteration_cap(settings):
    config = Config(llm={"api_key": "sk-test"}, agent={"max_iterations": 2})
    search = RecordingSearch()
    llm = scripted_llm(tool_call_reply("search", "again"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        text = await _stream(runner, _user("loop forever"), settings)

    assert llm.await_count == 2
    assert search.queries == ["again"]
    assert text.endswith(config.agent.give_up_message)


async def test_give_up_flag_in_run_result(settings):
    config = Config(llm={"api_key": "sk-test"}, agent={"max_iterations": 1})
    search = RecordingSearch()
    llm = scripted_llm(tool_call_reply("search", "again"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        result = await runner.run(_user("loop"), settings)

    assert result.gave_up is True
    assert result.output == config.agent.give_up_message
    assert search.queries == []


async def test_messages_are_append_only(config, settings):
    search = RecordingSearch(answer="[r](http://r)")
    llm = scripted_llm(tool_call_reply("search", "q"), AIMessage(content="done"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        loop = runner.build_loop(_user("question"), settings)
        snapshots = [
            list(values["messages"])
            async for values in loop.graph.astream(
                loop.inputs, config={"recursion_limit": loop.limit}, stream_mode="values"
            )
        ]

    for before, after in zip(snapshots, snapshots[1:]):
        assert len(after) >= len(before)
        assert [m.id for m in after[: len(before)]] == [m.id for m in before]
        assert [m.content for m in after[: len(before)]] == [m.content for m in before]
    assert [m.type for m in snapshots[-1]] == ["human", "ai", "tool", "ai"]


async def test_tool_failure_surfaces_as_tool_error(config, settings):
    @tool
    async def search(query: str) -> str:
        """Search the web."""
        raise RuntimeError("upstream 500")

    llm = scripted_llm(tool_call_reply("search", "x"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search]):
        with pytest.raises(ToolError) as exc:
            await _stream(runner, _user("x?"), settings)

    assert exc.value.status_code == 502
    assert "search" in str(exc.value)


async def test_provider_error_propagates(config, settings):
    runner = AgentRunner(config)
    with patch(CHAT, side_effect=ProviderError("LLM down")), patch(SELECT, return_value=[]):
        with pytest.raises(ProviderError):
            await _stream(runner, _user("hi"), settings)


# ── text (ReAct) strategy ─────────────────────────────────


async def test_text_strategy_loop(config):
    settings = RequestSettings.from_request(config, mode="text")
    search = RecordingSearch(answer="[Markets up](http://m)")
    llm = scripted_llm(
        AIMessage(content="Thought: Do I need to use a tool? Yes\nAction: search\nAction Input: market news"),
        AIMessage(content="Thought: Do I need to use a tool? No\nFinal Answer: Markets are up."),
    )
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        result = await runner.run(_user("market?"), settings)

    assert search.queries == ["market news"]
    assert result.output == "Markets are up."
    assert result.intermediate_steps == [
        {"tool": "search", "tool_input": "market news", "observation": "[Markets up](http://m)"}
    ]
    first, second = llm.call_args_list
    assert first.kwargs["tools"] is None
    assert "Action Input" in first.kwargs["messages"][0]["content"]
    assert second.kwargs["messages"][-1] == {
        "role": "user",
        "content": "Observation: [Markets up](http://m)",
    }


async def test_text_strategy_plain_reply_is_final(config):
    settings = RequestSettings.from_request(config, mode="text")
    llm = scripted_llm(AIMessage(content="Hello there!"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[]):
        text = await _stream(runner, _user("hi"), settings)

    assert text == "Hello there!"
    assert llm.await_count == 1


# ── runner routing / seeding ──────────────────────────────


async def test_direct_path_without_marker(config, settings):
    runner = AgentRunner(config)
    with patch(TEXT, new=text_stream("Hi", " there")), patch(CHAT) as chat:
        text = await _stream(runner, _user("hello"), settings, agent=None)
    assert text == "Hi there"
    chat.assert_not_called()


async def test_marker_routes_to_agent_and_is_stripped(config, settings):
    llm = scripted_llm(AIMessage(content="Agent answer."))
    runner = AgentRunner(config)
    messages = _user(f"{MARKER}\nwhat is the news today?")
    assert runner.wants_agent(messages)

    with patch(CHAT, llm), patch(SELECT, return_value=[]):
        text = await _stream(runner, messages, settings, agent=None)

    assert text == "Agent answer."
    sent = llm.call_args.kwargs["messages"]
    assert sent[-1] == {"role": "user", "content": "what is the news today?"}


async def test_history_and_locale_seeded(config):
    settings = RequestSettings.from_request(config, locale="Turkish")
    llm = scripted_llm(AIMessage(content="Tamam."))
    messages = normalize_all([
        {"role": "system", "content": "ignored"},
        {"role": "user", "content": "q1"},
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "q2"},
    ])
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[]):
        await runner.run(messages, settings, agent=True)

    sent = llm.call_args.kwargs["messages"]
    assert sent[0]["role"] == "system"
    assert "Turkish" in sent[0]["content"]
    assert [m["content"] for m in sent[1:]] == ["q1", "a1", "q2"]


async def test_history_excluded_when_disabled(settings):
    config = Config(llm={"api_key": "sk-test"}, agent={"include_history": False})
    runner = AgentRunner(config)
    messages = [HumanMessage(content="q1"), AIMessage(content="a1"), HumanMessage(content="q2")]

    with patch(SELECT, return_value=[]):
        loop = runner.build_loop(messages, settings)

    assert [m.content for m in loop.inputs["messages"]] == ["q2"]


def test_recursion_limit_covers_iterations(config):
    assert recursion_limit(config.agent) == 2 * config.agent.max_iterations + 4


# ── inbound function calls in history ─────────────────────

ANSWERED_CALL = [
    {"role": "user", "content": "news?"},
    {"role": "assistant", "content": "", "functionCall": {"name": "search", "arguments": '{"query": "news"}'}},
    {"role": "function", "name": "search", "content": "[Headline](http://news)"},
]


def _assert_calls_answered(wire):
    call_ids = {tc["id"] for m in wire for tc in m.get("tool_calls", [])}
    answered = {m["tool_call_id"] for m in wire if m["role"] == "tool"}
    assert answered == call_ids


async def test_answered_call_routes_direct(config, settings):
    search = RecordingSearch(answer="fresh")
    sent = []

    async def recording(messages, settings, temperature=None):
        sent.extend(messages)
        yield "The headline is ..."

    runner = AgentRunner(config)
    messages = normalize_all(ANSWERED_CALL)
    assert not runner.wants_agent(messages)

    with patch(TEXT, new=recording), patch(CHAT) as chat, patch(SELECT, return_value=[search.tool]):
        text = await _stream(runner, messages, settings, agent=None)

    assert text == "The headline is ..."
    assert search.queries == []
    chat.assert_not_called()
    _assert_calls_answered(sent)
    assert sent[-1]["content"] == "[Headline](http://news)"


async def test_forced_loop_uses_client_observation(config, settings):
    search = RecordingSearch(answer="fresh")
    llm = scripted_llm(AIMessage(content="The headline is ..."))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        result = await runner.run(normalize_all(ANSWERED_CALL), settings, agent=True)

    assert search.queries == []
    assert result.output == "The headline is ..."
    assert result.intermediate_steps == []
    sent = llm.call_args.kwargs["messages"]
    _assert_calls_answered(sent)
    assert sent[-1]["content"] == "[Headline](http://news)"


async def test_history_with_answered_call_is_well_formed(config, settings):
    llm = scripted_llm(AIMessage(content="Sunny."))
    messages = normalize_all([
        *ANSWERED_CALL,
        {"role": "assistant", "content": "Here is the news."},
        {"role": "user", "content": "and the weather?"},
    ])
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[]):
        await runner.run(messages, settings, agent=True)

    sent = llm.call_args.kwargs["messages"]
    _assert_calls_answered(sent)
    assert [m["role"] for m in sent[1:]] == ["user", "assistant", "tool", "assistant", "user"]


async def test_unrun_calls_dropped_from_next_model_call(config, settings):
    search = RecordingSearch(answer="[a](http://a)")
    two_calls = AIMessage(
        content="",
        tool_calls=[
            {"id": "c1", "name": "search", "args": {"query": "one"}},
            {"id": "c2", "name": "search", "args": {"query": "two"}},
        ],
    )
    llm = scripted_llm(two_calls, AIMessage(content="done"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        await runner.run(_user("q"), settings, agent=True)

    assert search.queries == ["one"]
    second = llm.call_args_list[1].kwargs["messages"]
    _assert_calls_answered(second)
    assert [tc["id"] for tc in second[2]["tool_calls"]] == ["c1"]


# ── strategy selection for marker-routed turns ────────────


async def test_react_marker_selects_text_strategy(config, settings):
    search = RecordingSearch(answer="[r](http://r)")
    llm = scripted_llm(
        AIMessage(content="Action: search\nAction Input: rates"),
        AIMessage(content="Final Answer: Stable."),
    )
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        result = await runner.run(_user(f"{MARKER}\nrates?"), settings)

    assert search.queries == ["rates"]
    assert result.output == "Stable."
    assert llm.call_args_list[0].kwargs["tools"] is None


async def test_explicit_mode_beats_marker(config):
    settings = RequestSettings.from_request(config, mode="function_call")
    search = RecordingSearch()
    llm = scripted_llm(AIMessage(content="ok"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        await runner.run(_user(f"{MARKER}\nrates?"), settings)

    assert llm.call_args.kwargs["tools"][0]["function"]["name"] == "search"


async def test_forced_loop_keeps_configured_strategy(config, settings):
    search = RecordingSearch()
    llm = scripted_llm(AIMessage(content="ok"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        await runner.run(_user(f"{MARKER}\nrates?"), settings, agent=True)

    assert llm.call_args.kwargs["tools"] is not None


# ── trace events ──────────────────────────────────────────


async def test_tool_start_event_precedes_result(config, settings):
    search = RecordingSearch(answer="[r](http://r)")
    llm = scripted_llm(tool_call_reply("search", "q"), AIMessage(content="done"))
    runner = AgentRunner(config)

    with patch(CHAT, llm), patch(SELECT, return_value=[search.tool]):
        loop = runner.build_loop(_user("q?"), settings)
        events = [e async for e in loop.events()]

    kinds = [type(e).__name__ for e in events]
    start = kinds.index("Other")
    assert events[start] == Other(TOOL_START, {"tool": "search", "query": "q"})
    assert kinds[start + 1] == "ToolResult"
