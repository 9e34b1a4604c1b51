"""Conversation state for the orchestration workflow."""

from typing import Annotated, Any, Dict, List, Optional, TypedDict

from langchain_core.messages import BaseMessage, messages_from_dict, messages_to_dict
from langgraph.graph.message import add_messages

from orchestrator.models.outcome import TurnOutcome

SUPERVISOR = "supervisor"


def merge_unique(left: Optional[List[str]], right: Optional[List[str]]) -> List[str]:
    """Ordered union of two name lists."""
    merged = list(left or [])
    for item in right or []:
        if item not in merged:
            merged.append(item)
    return merged


def merge_by_key(left: Optional[Dict[str, Any]], right: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow merge where keys from the newer update win."""
    merged = dict(left or {})
    merged.update(right or {})
    return merged


def merge_handles(
    left: Optional[Dict[str, str]], right: Optional[Dict[str, str]]
) -> Dict[str, str]:
    """Merge recovered resource handles, ignoring empty values."""
    merged = dict(left or {})
    for key, value in (right or {}).items():
        if value:
            merged[key] = value
    return merged


class AgentState(TypedDict, total=False):
    """
    State structure for the multi-agent workflow.

    One instance lives per thread. The engine rehydrates it from the checkpoint
    store at the start of every turn and persists it after every node step.
    """

    # Full conversation history (Human, AI, Tool messages)
    messages: Annotated[List[BaseMessage], add_messages]

    # Identity of the turn
    thread_id: str
    user_id: str

    # Agent that most recently ran; tool results return to it
    current_agent: str

    # Routing target chosen by the node that just ran
    next_node: Optional[str]

    # Specialists already run this turn
    specialists_invoked: Annotated[List[str], merge_unique]

    # Cache key -> {"value": str, "inserted_at": float}
    tool_cache: Annotated[Dict[str, Dict[str, Any]], merge_by_key]

    # Approval gate
    permission_granted: bool
    pending_approval: Optional[Dict[str, Any]]
    approval_decision: Optional[str]

    # Handles scavenged from earlier tool results (spreadsheet_id, account_id)
    resource_handles: Annotated[Dict[str, str], merge_handles]

    # Response text for the turn
    final_response: Optional[str]

    outcome: Optional[TurnOutcome]


def initial_state(thread_id: str, user_id: str) -> AgentState:
    """Fresh state for a thread with no checkpoint."""
    return {
        "messages": [],
        "thread_id": thread_id,
        "user_id": user_id,
        "current_agent": SUPERVISOR,
        "next_node": None,
        "specialists_invoked": [],
        "tool_cache": {},
        "permission_granted": False,
        "pending_approval": None,
        "approval_decision": None,
        "resource_handles": {},
        "final_response": None,
        "outcome": None,
    }


def serialize_state(state: AgentState) -> Dict[str, Any]:
    """Convert state into a JSON-compatible snapshot."""
    snapshot = {key: value for key, value in state.items() if key != "messages"}
    snapshot["messages"] = messages_to_dict(list(state.get("messages") or []))
    outcome = snapshot.get("outcome")
    if isinstance(outcome, TurnOutcome):
        snapshot["outcome"] = outcome.value
    return snapshot


def deserialize_state(snapshot: Dict[str, Any]) -> AgentState:
    """Rebuild state from a snapshot produced by ``serialize_state``."""
    state: AgentState = dict(snapshot)  # type: ignore[assignment]
    state["messages"] = messages_from_dict(snapshot.get("messages") or [])
    if state.get("outcome"):
        state["outcome"] = TurnOutcome(state["outcome"])
    return state
