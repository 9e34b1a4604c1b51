"""Supervisor node: routes work to specialists or finishes the turn."""

import logging
from typing import Optional, Sequence

from langchain_core.messages import ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END
from langgraph.types import StreamWriter
from pydantic import BaseModel, ValidationError

from orchestrator.agents.catalog import FINISH, SpecialistSpec
from orchestrator.approval import enforce_approval, paused_update
from orchestrator.context import get_engine_context
from orchestrator.errors import PermissionPendingError
from orchestrator.events import EventType, emit
from orchestrator.models.outcome import TurnOutcome
from orchestrator.nodes.model import invoke_model
from orchestrator.state import SUPERVISOR, AgentState
from orchestrator.telemetry import SpanKind, telemetry
from orchestrator.tools.builtin import SUPERVISOR_UTILITY_TOOLS
from orchestrator.utils.messages import content_to_text, latest_ai_text

logger = logging.getLogger(__name__)

ROUTE_TOOL = "route"

NO_ANSWER_TEXT = "I wasn't able to produce an answer for that request. Could you rephrase it?"


class RoutingDecision(BaseModel):
    """Arguments of the supervisor's ``route`` call."""

    next: str
    reasoning: str = ""


def route_tool_schema(specialists: Sequence[SpecialistSpec]) -> dict:
    """Function schema for the ``route`` capability."""
    return {
        "type": "function",
        "function": {
            "name": ROUTE_TOOL,
            "description": (
                "Select the next agent to handle the user's request. Use this tool when "
                "you need to hand off work to a specialist, or FINISH when done."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "next": {
                        "type": "string",
                        "enum": [spec.route_name for spec in specialists] + [FINISH],
                    },
                    "reasoning": {
                        "type": "string",
                        "description": "Why you are routing to this agent",
                    },
                },
                "required": ["next", "reasoning"],
            },
        },
    }


def build_supervisor_prompt(specialists: Sequence[SpecialistSpec], invoked: Sequence[str]) -> str:
    """System prompt listing the specialists and what already ran this turn."""
    routes = "\n".join(f"- {spec.route_name}: {spec.description}" for spec in specialists)
    already = ", ".join(invoked) if invoked else "none"
    return f"""You are Alex, a helpful marketing assistant coordinating specialist agents.

CONTEXT:
- Agents already run this turn: {already}
- Goal: answer the user's request. If several specialists are needed, run them one at a time.

ROUTING INSTRUCTIONS:
Use the 'route' tool to select the next step:
{routes}
- {FINISH}: all needed data is gathered, or no specialist is needed.

Do not route to an agent that already ran this turn unless the user asked for more from it.
When a specialist has answered, reply to the user in plain text without calling any tool.
If the user asks for the time or timezone, use the utility tools directly, do not route."""


def _parse_decision(call: dict) -> RoutingDecision:
    try:
        return RoutingDecision.model_validate(call.get("args") or {})
    except ValidationError:
        logger.warning("Malformed route call; treating as FINISH", extra={"node": SUPERVISOR})
        return RoutingDecision(next=FINISH, reasoning="malformed route call")


def _finish(state: AgentState, messages: list, text: Optional[str]) -> dict:
    final = text or latest_ai_text(state.get("messages") or []) or NO_ANSWER_TEXT
    return {
        "messages": messages,
        "current_agent": SUPERVISOR,
        "next_node": END,
        "final_response": final,
        "outcome": TurnOutcome.COMPLETED,
    }


async def supervisor_node(state: AgentState, config: RunnableConfig, writer: StreamWriter) -> dict:
    """
    Router node.

    Invokes the model with the ``route`` capability plus utility tools and
    translates its reply into the next transition:
    - route to a specialist -> that specialist
    - route FINISH or plain content -> end of turn
    - utility tool calls -> tools (control comes back here)

    Args:
        state: Current agent state
        config: Graph config carrying the engine context
        writer: Stream writer for routing and text events

    Returns:
        dict: Partial state update
    """
    ctx = get_engine_context(config)
    thread_id = state.get("thread_id", "")

    with telemetry.start_span(
        name="supervisor",
        kind=SpanKind.AGENT_NODE,
        attributes={"node": SUPERVISOR, "thread_id": thread_id},
    ) as span:
        tool_schemas = [route_tool_schema(ctx.specialists)] + ctx.registry.schemas_for(
            SUPERVISOR_UTILITY_TOOLS
        )
        response = await invoke_model(
            ctx,
            agent=SUPERVISOR,
            thread_id=thread_id,
            system_prompt=build_supervisor_prompt(
                ctx.specialists, state.get("specialists_invoked") or []
            ),
            history=state.get("messages") or [],
            tool_schemas=tool_schemas,
        )

        try:
            enforce_approval(response, SUPERVISOR, bool(state.get("permission_granted")))
        except PermissionPendingError as pending:
            span.set_attribute("approval.required", True)
            return paused_update(pending, response)

        text = content_to_text(response.content).strip()
        if text:
            emit(writer, EventType.TEXT_DELTA, SUPERVISOR, content=text)

        route_call = next(
            (call for call in response.tool_calls or [] if call["name"] == ROUTE_TOOL), None
        )
        if route_call is not None:
            decision = _parse_decision(route_call)
            target = ctx.specialist_for_route(decision.next)
            if target is None and decision.next != FINISH:
                logger.warning(
                    f"Route target '{decision.next}' is not a known specialist; finishing",
                    extra={"thread_id": thread_id, "node": SUPERVISOR},
                )
            destination = target.name if target else END
            acks = [
                ToolMessage(
                    content=(
                        f"Routing to {decision.next}."
                        if call["id"] == route_call["id"]
                        else "Not executed: routing took precedence."
                    ),
                    tool_call_id=call["id"],
                    name=call["name"],
                )
                for call in response.tool_calls
            ]
            emit(
                writer,
                EventType.ROUTING_DECISION,
                SUPERVISOR,
                next=decision.next,
                target=destination,
                reasoning=decision.reasoning,
            )
            span.set_attribute("route.next", decision.next)
            logger.info(
                f"Supervisor routed to {decision.next}",
                extra={"thread_id": thread_id, "node": SUPERVISOR},
            )
            if target is None:
                return _finish(state, [response, *acks], text)
            return {
                "messages": [response, *acks],
                "current_agent": SUPERVISOR,
                "next_node": target.name,
            }

        if response.tool_calls:
            return {"messages": [response], "current_agent": SUPERVISOR, "next_node": "tools"}

        # An empty reply adds nothing to the history; the latest specialist answer stands
        return _finish(state, [response] if text else [], text)
