"""Graph nodes — reason, execute_tools, give_up — and the routing functions."""

from __future__ import annotations

from typing import Any

from langchain_core.messages import AIMessage
from langchain_core.tools import BaseTool
from langgraph.graph import END
from langgraph.types import StreamWriter
from loguru import logger

from agentstream.agent.decision import CONTINUE, DecisionStrategy
from agentstream.agent.state import AgentState
from agentstream.agent.trace import TOOL_START, ModelToken, Other, ToolResult
from agentstream.core.config.schema import AgentConfig, RequestSettings
from agentstream.core.errors import ToolError, ToolNotFound
from agentstream.core.providers import litellm as llm_provider

GIVE_UP_PRODUCER = "give_up"


def make_nodes(
    settings: RequestSettings,
    tools: list[BaseTool],
    strategy: DecisionStrategy,
    agent_config: AgentConfig,
):
    """
    Create node and router functions closed over settings, tools and strategy.

    Returns dict of {name: callable} for graph registration.
    """
    tool_defs = _build_tool_definitions(tools) if tools and strategy.binds_tools else None
    tool_map = {t.name: t for t in tools}
    max_iterations = agent_config.max_iterations

    async def reason(state: AgentState, writer: StreamWriter) -> dict[str, Any]:
        """Call the LLM with the full conversation, streaming tokens as trace events."""
        iteration = state["iteration"] + 1
        producer = f"reason:{iteration}"
        messages = [{"role": "system", "content": state["system_prompt"]}]
        messages.extend(strategy.render(state["messages"]))

        ai_message = await llm_provider.astream_chat(
            messages=messages,
            settings=settings,
            tools=tool_defs,
            temperature=settings.agent_temperature,
            on_token=lambda text: writer(ModelToken(producer, text)),
        )

        if ai_message.tool_calls:
            names = [tc["name"] for tc in ai_message.tool_calls]
            logger.debug(f"LLM tool calls (step {iteration}): {names}")
        else:
            snippet = (ai_message.content or "")[:80]
            logger.debug(f"LLM response (step {iteration}): {snippet!r}")

        return {"messages": [ai_message], "iteration": iteration}

    async def execute_tools(state: AgentState, writer: StreamWriter) -> dict[str, Any]:
        """Run the one pending tool call of the newest message."""
        call = strategy.extract_call(state["messages"][-1])

        tool = tool_map.get(call.name)
        if tool is None:
            logger.warning(f"Tool not found: {call.name}")
            raise ToolNotFound(call.name, list(tool_map))

        logger.debug(f"Executing tool: {call.name}({call.query!r})")
        writer(Other(TOOL_START, {"tool": call.name, "query": call.query}))
        try:
            result = await tool.ainvoke({"query": call.query})
        except ToolError:
            raise
        except Exception as e:
            logger.error(f"Tool error: {call.name} → {e}")
            raise ToolError(call.name, e) from e

        output = str(result)
        logger.debug(f"Tool result: {call.name} → {output[:100]}")
        writer(ToolResult(tool=call.name, output=output, query=call.query))
        return {"messages": [strategy.observation(call, output)]}

    async def give_up(state: AgentState, writer: StreamWriter) -> dict[str, Any]:
        """Terminal answer once the iteration cap is hit."""
        logger.warning(f"Max iterations reached ({max_iterations}), giving up")
        text = agent_config.give_up_message
        writer(ModelToken(GIVE_UP_PRODUCER, text))
        return {"messages": [AIMessage(content=text)], "gave_up": True}

    def route_entry(state: AgentState) -> str:
        """START edge: a seeded pending call goes straight to the tool."""
        if strategy.decide(state["messages"][-1]) == CONTINUE:
            return "execute_tools"
        return "reason"

    def should_continue(state: AgentState) -> str:
        """Conditional edge: after reason, go to tools, give up, or finish."""
        if strategy.decide(state["messages"][-1]) != CONTINUE:
            return END

        # Max iteration guard
        if state["iteration"] >= max_iterations:
            return "give_up"

        return "execute_tools"

    return {
        "reason": reason,
        "execute_tools": execute_tools,
        "give_up": give_up,
        "route_entry": route_entry,
        "should_continue": should_continue,
    }


def _build_tool_definitions(tools: list[BaseTool]) -> list[dict[str, Any]]:
    """Convert LangChain tools to OpenAI function format."""
    defs = []
    for tool in tools:
        schema = tool.args_schema.model_json_schema() if tool.args_schema else {}
        defs.append(
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameters": schema,
                },
            }
        )
    return defs
