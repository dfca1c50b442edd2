"""AgentRunner — routes a conversation to the direct-answer path or the agent loop."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from loguru import logger

from agentstream.agent import direct
from agentstream.agent.decision import DecisionStrategy, get_strategy
from agentstream.agent.graph import create_graph, recursion_limit
from agentstream.agent.messages import (
    current_exchange,
    has_continuation_marker,
    has_function_call,
    split_input,
    strip_marker,
    text_of,
)
from agentstream.agent.tools import citation_patterns, select_tools
from agentstream.agent.trace import TraceEvent, multiplex
from agentstream.core.config.schema import Config, RequestSettings


@dataclass
class RunResult:
    """Outcome of a non-streaming run."""

    output: str
    intermediate_steps: list[dict[str, str]] = field(default_factory=list)
    gave_up: bool = False


@dataclass
class AgentLoop:
    """One compiled graph plus its seed state, ready to run once."""

    graph: Any
    inputs: dict[str, Any]
    strategy: DecisionStrategy
    tools: list
    limit: int

    async def events(self) -> AsyncIterator[TraceEvent]:
        """Trace events in production order."""
        async for event in self.graph.astream(
            self.inputs,
            config={"recursion_limit": self.limit},
            stream_mode="custom",
        ):
            yield event

    async def run(self) -> dict[str, Any]:
        return await self.graph.ainvoke(
            self.inputs, config={"recursion_limit": self.limit}
        )


class AgentRunner:
    """
    Request-scoped orchestrator.

    Flow:
        1. Split the conversation into current input + history
        2. No continuation marker → direct answer (stream model tokens)
        3. Otherwise → compile the agent graph for this request's tools and
           strategy, run it, and multiplex its trace into text
    """

    def __init__(self, config: Config):
        self.config = config

    def wants_agent(self, messages: list[BaseMessage]) -> bool:
        """True when the latest turn carries a continuation marker.

        A tool result as the latest turn answers the call before it, so
        nothing is pending.
        """
        current, _ = split_input(messages)
        return has_continuation_marker(current, self.config.agent.react_marker)

    def decision_for(
        self, messages: list[BaseMessage], settings: RequestSettings, routed: bool
    ) -> str:
        """Strategy name for this request.

        A turn routed into the loop by the ReAct text marker uses
        ``agent.marker_decision`` unless the request names a mode.
        """
        if not routed or settings.mode is not None:
            return settings.decision
        current, _ = split_input(messages)
        marker = self.config.agent.react_marker
        if marker and not has_function_call(current) and marker in text_of(current):
            return self.config.agent.marker_decision
        return settings.decision

    def build_loop(
        self,
        messages: list[BaseMessage],
        settings: RequestSettings,
        routed: bool = False,
    ) -> AgentLoop:
        """Compile the graph and seed state for one request.

        ``routed`` is True when the loop was chosen from the conversation
        itself rather than forced by the caller.
        """
        agent_cfg = self.config.agent
        strategy = get_strategy(self.decision_for(messages, settings, routed))
        tools = select_tools(settings, self.config)

        current, history = split_input(messages)
        turns = [*history, current]
        if not agent_cfg.include_history:
            turns = current_exchange(turns)
        seed = [strip_marker(m, agent_cfg.react_marker) for m in turns]

        graph = create_graph(settings, tools, strategy, agent_cfg)
        inputs = {
            "messages": seed,
            "system_prompt": strategy.system_prompt(tools, settings.locale),
            "iteration": 0,
            "gave_up": False,
        }
        logger.debug(
            f"Agent loop: strategy={strategy.name}, "
            f"tools={[t.name for t in tools]}, seed={len(seed)} messages"
        )
        return AgentLoop(graph, inputs, strategy, tools, recursion_limit(agent_cfg))

    async def stream(
        self,
        messages: list[BaseMessage],
        settings: RequestSettings,
        agent: bool | None = None,
    ) -> AsyncIterator[str]:
        """Yield the reply as ordered text chunks.

        ``agent`` forces (True) or forbids (False) the agent loop; None decides
        from the latest turn.
        """
        use_agent = self.wants_agent(messages) if agent is None else agent
        if not use_agent:
            async for chunk in direct.answer(messages, settings):
                yield chunk
            return

        loop = self.build_loop(messages, settings, routed=agent is None)
        async for chunk in multiplex(
            loop.events(),
            citation_patterns(loop.tools),
            dedupe=self.config.stream.dedupe_tokens,
        ):
            yield chunk

    async def run(
        self,
        messages: list[BaseMessage],
        settings: RequestSettings,
        agent: bool | None = None,
    ) -> RunResult:
        """Run to completion and return the final answer with the tool steps taken."""
        use_agent = self.wants_agent(messages) if agent is None else agent
        if not use_agent:
            return RunResult(output=await direct.answer_once(messages, settings))

        loop = self.build_loop(messages, settings, routed=agent is None)
        state = await loop.run()
        return RunResult(
            output=self._extract_response(state, loop.strategy),
            intermediate_steps=self._extract_steps(
                state, loop.strategy, start=len(loop.inputs["messages"])
            ),
            gave_up=state.get("gave_up", False),
        )

    @staticmethod
    def _extract_response(state: dict, strategy: DecisionStrategy) -> str:
        """Get final assistant text from state."""
        last = state["messages"][-1]
        if isinstance(last, AIMessage):
            return strategy.final_text(last)
        return ""

    @staticmethod
    def _extract_steps(
        state: dict, strategy: DecisionStrategy, start: int = 0
    ) -> list[dict[str, str]]:
        """Pair each tool observation produced by this run with its call.

        Tool turns before ``start`` came in with the request and are skipped.
        """
        steps = []
        messages = state["messages"]
        for index in range(max(start, 1), len(messages)):
            msg = messages[index]
            if not isinstance(msg, ToolMessage):
                continue
            call = strategy.extract_call(messages[index - 1])
            steps.append(
                {
                    "tool": call.name,
                    "tool_input": call.query,
                    "observation": str(msg.content),
                }
            )
        return steps
