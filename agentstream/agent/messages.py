"""Message model — inbound chat turns ⇄ LangChain messages ⇄ chat-completion dicts."""

from __future__ import annotations

import json
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    ChatMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentstream.core.errors import ConfigError

USER = "user"
ASSISTANT = "assistant"
SYSTEM = "system"
TOOL = "tool"

_TOOL_ROLES = frozenset({TOOL, "function"})
_CONVERSATIONAL = frozenset({USER, ASSISTANT})
_DIALOGUE = _CONVERSATIONAL | {TOOL}


class FunctionCall(BaseModel):
    """Structured continuation marker attached to an inbound turn."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode(cls, value: Any) -> dict[str, Any]:
        if value is None or value == "":
            return {}
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except json.JSONDecodeError:
                return {"query": value}
            return decoded if isinstance(decoded, dict) else {"query": str(decoded)}
        return {"query": str(value)}


class InboundMessage(BaseModel):
    """One chat turn as sent by the client."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: str
    content: str = ""
    name: str | None = None
    function_call: FunctionCall | None = Field(default=None, alias="functionCall")


def normalize(
    raw: InboundMessage | dict[str, Any],
    call_id: str = "call_inbound",
    reply_to: str | None = None,
) -> BaseMessage:
    """Map an inbound turn to a LangChain message.

    ``call_id`` names the tool call built from an assistant ``functionCall``;
    ``reply_to`` is the call a tool/function turn answers. Unknown roles are
    kept as a ``ChatMessage`` carrying the original label.
    """
    if isinstance(raw, dict):
        raw = InboundMessage.model_validate(raw)

    role = raw.role.lower()
    if role == USER:
        return HumanMessage(content=raw.content)
    if role == ASSISTANT:
        tool_calls = []
        if raw.function_call is not None:
            tool_calls.append(
                {
                    "id": call_id,
                    "name": raw.function_call.name,
                    "args": raw.function_call.arguments,
                }
            )
        return AIMessage(content=raw.content, tool_calls=tool_calls)
    if role == SYSTEM:
        return SystemMessage(content=raw.content)
    if role in _TOOL_ROLES:
        return ToolMessage(
            content=raw.content,
            name=raw.name,
            tool_call_id=reply_to or raw.name or call_id,
        )
    return ChatMessage(content=raw.content, role=raw.role)


def normalize_all(raw: list[InboundMessage | dict[str, Any]]) -> list[BaseMessage]:
    """Normalize a conversation, linking each tool turn to the call just before it.

    Every inbound ``functionCall`` gets its own id (``call_inbound_<n>``); the
    tool or function turn that directly follows it answers that id.
    """
    messages: list[BaseMessage] = []
    pending: str | None = None
    for index, item in enumerate(raw):
        msg = normalize(item, call_id=f"call_inbound_{index}", reply_to=pending)
        pending = None
        if isinstance(msg, AIMessage) and msg.tool_calls:
            pending = msg.tool_calls[0]["id"]
        messages.append(msg)
    return messages


def role_of(msg: BaseMessage) -> str:
    """Internal role label of a LangChain message."""
    if isinstance(msg, HumanMessage):
        return USER
    if isinstance(msg, AIMessage):
        return ASSISTANT
    if isinstance(msg, SystemMessage):
        return SYSTEM
    if isinstance(msg, ToolMessage):
        return TOOL
    if isinstance(msg, ChatMessage):
        return msg.role
    return msg.type


def pair_tool_turns(
    messages: list[BaseMessage], keep_pending_last: bool = False
) -> list[BaseMessage]:
    """Make tool-call links consistent for a chat-completion request.

    Tool turns that answer no assistant call are dropped, and assistant calls
    that no tool turn answers lose their ``tool_calls``. With
    ``keep_pending_last`` the final message keeps its calls so the agent loop
    can still run them.
    """
    call_ids = {
        tc["id"] for m in messages if isinstance(m, AIMessage) for tc in m.tool_calls
    }
    answered = {m.tool_call_id for m in messages if isinstance(m, ToolMessage)}
    last = len(messages) - 1

    paired: list[BaseMessage] = []
    for index, msg in enumerate(messages):
        if isinstance(msg, ToolMessage):
            if msg.tool_call_id in call_ids:
                paired.append(msg)
            continue
        if isinstance(msg, AIMessage) and msg.tool_calls:
            if not (keep_pending_last and index == last):
                kept = [tc for tc in msg.tool_calls if tc["id"] in answered]
                if len(kept) != len(msg.tool_calls):
                    msg = AIMessage(content=msg.content, tool_calls=kept)
        paired.append(msg)
    return paired


def dialogue(messages: list[BaseMessage]) -> list[BaseMessage]:
    """User and assistant turns plus the tool turns that answer them.

    A call left open by the last turn stays pending; every other call is
    either answered in the result or dropped from it.
    """
    turns = [m for m in messages if role_of(m) in _DIALOGUE]
    return pair_tool_turns(turns, keep_pending_last=True)


def split_input(messages: list[BaseMessage]) -> tuple[BaseMessage, list[BaseMessage]]:
    """Split the dialogue into (latest turn, history).

    The latest turn may be a tool result, in which case nothing is pending.

    Raises
    ------
    ConfigError
        When there is no user or assistant turn at all.
    """
    turns = dialogue(messages)
    if not any(role_of(m) in _CONVERSATIONAL for m in turns):
        raise ConfigError("Conversation has no user or assistant messages")
    return turns[-1], turns[:-1]


def current_exchange(turns: list[BaseMessage]) -> list[BaseMessage]:
    """Turns from the last user message on (the whole list if there is none)."""
    for index in range(len(turns) - 1, -1, -1):
        if isinstance(turns[index], HumanMessage):
            return turns[index:]
    return list(turns)


def has_function_call(msg: BaseMessage) -> bool:
    return isinstance(msg, AIMessage) and bool(msg.tool_calls)


def has_continuation_marker(msg: BaseMessage, react_marker: str) -> bool:
    """True when the turn asks for the agent loop instead of a direct answer."""
    if has_function_call(msg):
        return True
    return bool(react_marker) and react_marker in text_of(msg)


def to_wire(msg: BaseMessage) -> dict[str, Any]:
    """Convert a LangChain message to a chat-completion dict."""
    if isinstance(msg, HumanMessage):
        return {"role": USER, "content": text_of(msg)}
    if isinstance(msg, AIMessage):
        d: dict[str, Any] = {"role": ASSISTANT, "content": text_of(msg)}
        if msg.tool_calls:
            d["tool_calls"] = [
                {
                    "id": tc["id"],
                    "type": "function",
                    "function": {
                        "name": tc["name"],
                        "arguments": json.dumps(tc["args"], ensure_ascii=False),
                    },
                }
                for tc in msg.tool_calls
            ]
        return d
    if isinstance(msg, ToolMessage):
        return {
            "role": TOOL,
            "tool_call_id": msg.tool_call_id,
            "content": text_of(msg),
        }
    if isinstance(msg, SystemMessage):
        return {"role": SYSTEM, "content": text_of(msg)}
    if isinstance(msg, ChatMessage):
        return {"role": msg.role, "content": text_of(msg)}
    return {"role": USER, "content": text_of(msg)}


def text_of(msg: BaseMessage) -> str:
    content = msg.content
    if isinstance(content, str):
        return content
    # Multi-part content: keep the text parts only
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def strip_marker(msg: BaseMessage, marker: str) -> BaseMessage:
    """Drop the routing marker from a user turn before it reaches the model."""
    if not marker or not isinstance(msg, HumanMessage):
        return msg
    text = text_of(msg)
    if marker not in text:
        return msg
    return HumanMessage(content=text.replace(marker, "").strip())
