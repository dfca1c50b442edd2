"""AgentState — LangGraph state definition."""

from __future__ import annotations

from langgraph.graph import MessagesState


class AgentState(MessagesState):
    """
    Extends MessagesState (messages: Annotated[list[BaseMessage], add_messages]).

    Nodes only return deltas; ``add_messages`` appends them, so every earlier
    snapshot of ``messages`` is a prefix of every later one.
    """

    system_prompt: str
    iteration: int
    gave_up: bool
