"""Specialist agent nodes, one per catalog entry."""

import logging
from datetime import datetime, timezone
from typing import Callable, Tuple

from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableConfig
from langgraph.types import StreamWriter

from orchestrator.agents.catalog import SpecialistSpec
from orchestrator.approval import enforce_approval, paused_update
from orchestrator.context import get_engine_context
from orchestrator.errors import PermissionPendingError
from orchestrator.events import EventType, emit
from orchestrator.execution.eviction import READ_EVICTED_TOOL
from orchestrator.nodes.model import invoke_model
from orchestrator.resources import describe_handles, handles_from_recent_messages
from orchestrator.state import SUPERVISOR, AgentState
from orchestrator.telemetry import SpanKind, telemetry
from orchestrator.utils.messages import content_to_text

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = (
    "I'm sorry, I couldn't put together a response for that. "
    "Could you rephrase or add a bit more detail?"
)


def allowed_tools(spec: SpecialistSpec) -> Tuple[str, ...]:
    """Tools a specialist may call: its domain tools plus evicted-result reads."""
    return tuple(spec.tool_names) + (READ_EVICTED_TOOL,)


def build_specialist_prompt(spec: SpecialistSpec, state: AgentState, now: datetime) -> str:
    """Domain prompt extended with the current time and recovered handles."""
    handles = dict(state.get("resource_handles") or {})
    for key, value in handles_from_recent_messages(state.get("messages") or []).items():
        handles.setdefault(key, value)

    sections = [spec.prompt, f"Current date/time (UTC): {now.isoformat(timespec='seconds')}"]
    described = describe_handles(handles)
    if described:
        sections.append(f"KNOWN RESOURCES:\n{described}")
    return "\n\n".join(sections)


def make_specialist_node(spec: SpecialistSpec) -> Callable:
    """Build the graph node for a specialist."""

    async def specialist_node(
        state: AgentState, config: RunnableConfig, writer: StreamWriter
    ) -> dict:
        ctx = get_engine_context(config)
        thread_id = state.get("thread_id", "")

        with telemetry.start_span(
            name=spec.name,
            kind=SpanKind.AGENT_NODE,
            attributes={"node": spec.name, "thread_id": thread_id},
        ) as span:
            now = datetime.fromtimestamp(ctx.clock(), tz=timezone.utc)
            response = await invoke_model(
                ctx,
                agent=spec.name,
                thread_id=thread_id,
                system_prompt=build_specialist_prompt(spec, state, now),
                history=state.get("messages") or [],
                tool_schemas=ctx.registry.schemas_for(allowed_tools(spec)),
            )

            text = content_to_text(response.content).strip()
            if not text and not response.tool_calls:
                logger.warning(
                    "Specialist returned an empty response",
                    extra={"thread_id": thread_id, "node": spec.name},
                )
                response = AIMessage(content=EMPTY_RESPONSE_TEXT, id=response.id)
                text = EMPTY_RESPONSE_TEXT

            base = {"current_agent": spec.name, "specialists_invoked": [spec.name]}
            try:
                enforce_approval(response, spec.name, bool(state.get("permission_granted")))
            except PermissionPendingError as pending:
                span.set_attribute("approval.required", True)
                logger.info(
                    "Sensitive action deferred pending approval",
                    extra={"thread_id": thread_id, "node": spec.name},
                )
                return {**paused_update(pending, response), **base}

            if text:
                emit(writer, EventType.TEXT_DELTA, spec.name, content=text)

            next_node = "tools" if response.tool_calls else SUPERVISOR
            span.set_attribute("next_node", next_node)
            return {"messages": [response], "next_node": next_node, **base}

    specialist_node.__name__ = f"{spec.name}_node"
    return specialist_node
