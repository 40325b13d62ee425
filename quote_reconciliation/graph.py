"""
LangGraph orchestration for one reconciliation round.
Defines the graph structure and node routing logic.
"""

from typing import Literal
from langgraph.graph import StateGraph, END

from quote_reconciliation.state import ReconciliationState
from quote_reconciliation.agents.matching import matching_agent
from quote_reconciliation.agents.discrepancy import discrepancy_detection_agent, review_flag_agent


def route_after_matching(state: ReconciliationState) -> Literal["discrepancy_agent", "end"]:
    """Route after matching. A quote with no lines and no catalog has nothing to analyze."""
    if not state.match_results:
        return "end"
    return "discrepancy_agent"


def build_reconciliation_graph():
    """
    Build the LangGraph workflow for quote reconciliation.

    Flow:
    1. Matching Agent - pair extracted lines with requested items
    2. Discrepancy Detection Agent - quantities, totals, shipping, taxes, supplier
    3. Review Flag Agent - decide whether a human needs to look
    """
    graph = StateGraph(ReconciliationState)

    graph.add_node("matching_agent", matching_agent)
    graph.add_node("discrepancy_agent", discrepancy_detection_agent)
    graph.add_node("review_flag_agent", review_flag_agent)

    graph.set_entry_point("matching_agent")

    graph.add_conditional_edges(
        "matching_agent",
        route_after_matching,
        {
            "discrepancy_agent": "discrepancy_agent",
            "end": END,
        }
    )
    graph.add_edge("discrepancy_agent", "review_flag_agent")
    graph.add_edge("review_flag_agent", END)

    return graph.compile()


# Global compiled graph (singleton)
_reconciliation_graph = None


def get_reconciliation_graph():
    """Get or create the compiled reconciliation graph."""
    global _reconciliation_graph
    if _reconciliation_graph is None:
        _reconciliation_graph = build_reconciliation_graph()
    return _reconciliation_graph


def run_reconciliation(state: ReconciliationState) -> ReconciliationState:
    """Run the graph synchronously and return the final state."""
    result = get_reconciliation_graph().invoke(state)
    if isinstance(result, ReconciliationState):
        return result
    return ReconciliationState(**result)
