"""LangGraph workflow definition for the multi-agent orchestrator."""

import logging
from typing import Callable, Dict, List, Sequence

from langgraph.graph import END, START, StateGraph

from orchestrator.agents.catalog import DEFAULT_SPECIALISTS, SpecialistSpec, validate_specialists
from orchestrator.approval import ApprovalDecision
from orchestrator.errors import RoutingContractError
from orchestrator.nodes.approval import APPROVAL_RESUME_NODE, approval_resume_node
from orchestrator.nodes.specialist import make_specialist_node
from orchestrator.nodes.supervisor import supervisor_node
from orchestrator.nodes.tools import TOOLS_NODE, tools_node
from orchestrator.state import SUPERVISOR, AgentState

logger = logging.getLogger(__name__)


def route_entry(state: AgentState) -> str:
    """
    Conditional edge logic at the start of a turn.

    Routes to approval_resume when the caller approved a pending action,
    otherwise to the supervisor.

    Args:
        state: Current agent state

    Returns:
        str: Next node name
    """
    approved = state.get("approval_decision") == ApprovalDecision.APPROVED
    if approved and state.get("pending_approval"):
        return APPROVAL_RESUME_NODE
    return SUPERVISOR


def route_by_next_node(state: AgentState) -> str:
    """
    Conditional edge logic after any agent, tools or resume node.

    Each node records its chosen successor in ``next_node``; a missing value
    ends the turn.
    """
    return state.get("next_node") or END


def allowed_targets(specialists: Sequence[SpecialistSpec]) -> Dict[str, List[str]]:
    """Declared successor set for every routed node."""
    names = [spec.name for spec in specialists]
    targets = {
        START: [SUPERVISOR, APPROVAL_RESUME_NODE],
        SUPERVISOR: [*names, TOOLS_NODE, END],
        TOOLS_NODE: [SUPERVISOR, *names, END],
        APPROVAL_RESUME_NODE: [TOOLS_NODE, SUPERVISOR, *names],
    }
    for name in names:
        targets[name] = [TOOLS_NODE, SUPERVISOR, END]
    return targets


def guard_route(source: str, route_fn: Callable[[AgentState], str], allowed: Sequence[str]):
    """Wrap a routing function so it can only return a declared target.

    Raises:
        RoutingContractError: When ``route_fn`` returns anything else.
    """
    allowed_set = frozenset(allowed)

    def guarded(state: AgentState) -> str:
        target = route_fn(state)
        if target not in allowed_set:
            logger.error(
                f"Routing contract violation: {source} -> {target}",
                extra={"thread_id": state.get("thread_id"), "node": source},
            )
            raise RoutingContractError(source, target, sorted(allowed_set))
        return target

    guarded.__name__ = f"{route_fn.__name__}_from_{source.strip('_')}"
    return guarded


def create_workflow(specialists: Sequence[SpecialistSpec] = DEFAULT_SPECIALISTS) -> StateGraph:
    """
    Create and configure the LangGraph workflow.

    Flow: START -> supervisor (or approval_resume) -> specialist -> tools ->
    specialist -> supervisor -> END. Every conditional edge is guarded by its
    declared target set.

    Args:
        specialists: Specialist catalog

    Returns:
        StateGraph: Configured workflow graph (not compiled)
    """
    validate_specialists(specialists)
    targets = allowed_targets(specialists)

    workflow = StateGraph(AgentState)
    workflow.add_node(SUPERVISOR, supervisor_node)
    workflow.add_node(TOOLS_NODE, tools_node)
    workflow.add_node(APPROVAL_RESUME_NODE, approval_resume_node)
    for spec in specialists:
        workflow.add_node(spec.name, make_specialist_node(spec))

    workflow.add_conditional_edges(
        START,
        guard_route(START, route_entry, targets[START]),
        {target: target for target in targets[START]},
    )
    for source, allowed in targets.items():
        if source == START:
            continue
        workflow.add_conditional_edges(
            source,
            guard_route(source, route_by_next_node, allowed),
            {target: target for target in allowed},
        )

    return workflow
