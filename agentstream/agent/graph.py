"""LangGraph StateGraph — compile agent graph."""

from __future__ import annotations

from langchain_core.tools import BaseTool
from langgraph.graph import END, START, StateGraph

from agentstream.agent.decision import DecisionStrategy
from agentstream.agent.nodes import make_nodes
from agentstream.agent.state import AgentState
from agentstream.core.config.schema import AgentConfig, RequestSettings


def create_graph(
    settings: RequestSettings,
    tools: list[BaseTool],
    strategy: DecisionStrategy,
    agent_config: AgentConfig,
):
    """
    Build and compile the agent graph for one request.

    Graph flow:
        START → reason ⇄ execute_tools → END
        START → execute_tools            (conversation ends on a pending call)
        reason → give_up → END           (iteration cap)
    """
    nodes = make_nodes(settings, tools, strategy, agent_config)

    graph = StateGraph(AgentState)

    # Add nodes
    graph.add_node("reason", nodes["reason"])
    graph.add_node("execute_tools", nodes["execute_tools"])
    graph.add_node("give_up", nodes["give_up"])

    # Edges
    graph.add_conditional_edges(START, nodes["route_entry"], ["reason", "execute_tools"])
    graph.add_conditional_edges(
        "reason", nodes["should_continue"], ["execute_tools", "give_up", END]
    )
    graph.add_edge("execute_tools", "reason")
    graph.add_edge("give_up", END)
    return graph.compile()


def recursion_limit(agent_config: AgentConfig) -> int:
    """LangGraph super-step budget: two steps per iteration plus entry and give_up."""
    return 2 * agent_config.max_iterations + 4
