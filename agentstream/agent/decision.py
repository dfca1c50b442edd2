"""Continuation decision strategies — when does the loop call a tool, and which one."""

from __future__ import annotations

import abc
import json
import re
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from langchain_core.tools import BaseTool

from agentstream.agent.messages import pair_tool_turns, text_of, to_wire
from agentstream.agent.prompts import FUNCTION_CALL_PROMPT, REACT_PROMPT, with_locale
from agentstream.core.errors import ConfigError, ParseError

CONTINUE = "continue"
END = "end"

_ACTION = re.compile(
    r"Action\s*\d*\s*:[\s]*(?P<tool>.*?)[\s]*Action\s*\d*\s*Input\s*\d*\s*:[\s]*(?P<input>.*)",
    re.DOTALL,
)
FINAL_ANSWER = "Final Answer:"


@dataclass(frozen=True)
class ToolCall:
    """A pending tool invocation extracted from an assistant message."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def query(self) -> str:
        """The single text input handed to a search tool."""
        for key in ("query", "input", "q"):
            value = self.args.get(key)
            if isinstance(value, str):
                return value
        if len(self.args) == 1:
            return str(next(iter(self.args.values())))
        return json.dumps(self.args, ensure_ascii=False)


class DecisionStrategy(abc.ABC):
    """Pluggable part of the agent loop.

    ``decide`` must be a pure function of the newest message and look only at
    control markers, never at free-form content.
    """

    name: str = ""
    binds_tools: bool = False

    @abc.abstractmethod
    def decide(self, message: BaseMessage) -> str:
        """Return CONTINUE or END for the newest message."""

    @abc.abstractmethod
    def extract_call(self, message: BaseMessage) -> ToolCall:
        """Return the pending tool call; raise ParseError if there is none."""

    @abc.abstractmethod
    def system_prompt(self, tools: list[BaseTool], locale: str = "") -> str:
        ...

    def render(self, messages: list[BaseMessage]) -> list[dict[str, Any]]:
        """Messages in chat-completion format for the next model call.

        Calls the loop did not run (all but the first of a multi-call turn)
        are dropped so every remaining call has its answer.
        """
        return [to_wire(m) for m in pair_tool_turns(messages)]

    def observation(self, call: ToolCall, output: str) -> ToolMessage:
        return ToolMessage(content=output, tool_call_id=call.id, name=call.name)

    def final_text(self, message: BaseMessage) -> str:
        return text_of(message)


class FunctionCallStrategy(DecisionStrategy):
    """Structured function calling: continue iff the model returned ``tool_calls``."""

    name = "function_call"
    binds_tools = True

    def decide(self, message: BaseMessage) -> str:
        if isinstance(message, AIMessage) and message.tool_calls:
            return CONTINUE
        return END

    def extract_call(self, message: BaseMessage) -> ToolCall:
        if not isinstance(message, AIMessage):
            raise ParseError(f"Expected an assistant message, got '{message.type}'")
        if not message.tool_calls:
            raise ParseError("No function call found in message")
        tc = message.tool_calls[0]
        if not tc.get("name"):
            raise ParseError("Function call has no tool name")
        return ToolCall(id=tc.get("id") or "call_0", name=tc["name"], args=tc.get("args") or {})

    def system_prompt(self, tools: list[BaseTool], locale: str = "") -> str:
        return with_locale(FUNCTION_CALL_PROMPT, locale)


class TextPatternStrategy(FunctionCallStrategy):
    """ReAct text protocol for models without function calling.

    Structured ``tool_calls`` are still honoured first; otherwise the content
    is parsed for ``Action:`` / ``Action Input:``. A ``Final Answer:`` marker
    ends the loop, and content with no marker at all is treated as the final
    answer instead of failing.
    """

    name = "text"
    binds_tools = False

    def decide(self, message: BaseMessage) -> str:
        if super().decide(message) == CONTINUE:
            return CONTINUE
        if not isinstance(message, AIMessage):
            return END
        return CONTINUE if self._parse(text_of(message)) is not None else END

    def extract_call(self, message: BaseMessage) -> ToolCall:
        if isinstance(message, AIMessage) and message.tool_calls:
            return super().extract_call(message)
        parsed = self._parse(text_of(message))
        if parsed is None:
            raise ParseError("No 'Action:' / 'Action Input:' found in model output")
        name, query = parsed
        return ToolCall(id="react_call", name=name, args={"query": query})

    def system_prompt(self, tools: list[BaseTool], locale: str = "") -> str:
        described = "\n".join(f"{t.name}: {t.description}" for t in tools) or "(none)"
        names = ", ".join(t.name for t in tools)
        return with_locale(REACT_PROMPT.format(tools=described, tool_names=names), locale)

    def render(self, messages: list[BaseMessage]) -> list[dict[str, Any]]:
        rendered = []
        for m in messages:
            if isinstance(m, ToolMessage):
                rendered.append({"role": "user", "content": f"Observation: {text_of(m)}"})
            elif isinstance(m, AIMessage):
                rendered.append({"role": "assistant", "content": text_of(m)})
            else:
                rendered.append(to_wire(m))
        return rendered

    def final_text(self, message: BaseMessage) -> str:
        text = text_of(message)
        if FINAL_ANSWER in text:
            return text.rsplit(FINAL_ANSWER, 1)[1].strip()
        return text

    @staticmethod
    def _parse(text: str) -> tuple[str, str] | None:
        """Return (tool, input) for an action, None for a final answer or plain text."""
        if FINAL_ANSWER in text:
            return None
        match = _ACTION.search(text)
        if match is None:
            return None
        tool = match["tool"].strip().strip("`[]*\"'")
        query = match["input"].split("\nObservation")[0].strip().strip("`\"'")
        if not tool:
            return None
        return tool, query


STRATEGIES: dict[str, type[DecisionStrategy]] = {
    FunctionCallStrategy.name: FunctionCallStrategy,
    TextPatternStrategy.name: TextPatternStrategy,
}


def get_strategy(name: str) -> DecisionStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ConfigError(f"Unknown decision strategy '{name}'") from None
