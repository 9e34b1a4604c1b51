"""Tool execution node.

Runs the tool calls of the latest AI message through the loop guard, the
per-thread cache, the registry and finally size-based eviction. Results are
returned in the order the calls were requested, each tied to its call id.
"""

import logging
from typing import Dict, FrozenSet, List

from langchain_core.messages import AIMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END
from langgraph.types import StreamWriter

from orchestrator.approval import is_approved_replay
from orchestrator.context import EngineContext, get_engine_context
from orchestrator.errors import ErrorCategory, LoopDetectedError, ToolError
from orchestrator.events import EventType, emit
from orchestrator.execution.cache import cache_key, lookup, make_entry
from orchestrator.execution.eviction import evict_if_oversized
from orchestrator.execution.executor import error_tool_message, execute_batch
from orchestrator.execution.loop_guard import check_for_loop
from orchestrator.models.outcome import TurnOutcome
from orchestrator.nodes.specialist import allowed_tools
from orchestrator.resources import handles_from_tool_result
from orchestrator.state import SUPERVISOR, AgentState
from orchestrator.telemetry import SpanKind, telemetry
from orchestrator.tools.builtin import SUPERVISOR_UTILITY_TOOLS
from orchestrator.tools.registry import ToolContext
from orchestrator.utils.messages import content_to_text

logger = logging.getLogger(__name__)

TOOLS_NODE = "tools"

LOOP_SKIPPED_TEXT = (
    "Skipped: this exact call was already made two steps ago in this turn. "
    "The request was stopped to avoid a loop."
)


def permitted_tools(ctx: EngineContext, agent: str) -> FrozenSet[str]:
    """Tools the given agent is allowed to call."""
    if agent == SUPERVISOR:
        return frozenset(SUPERVISOR_UTILITY_TOOLS)
    return frozenset(allowed_tools(ctx.specialist(agent)))


def is_cacheable(ctx: EngineContext, agent: str, name: str) -> bool:
    """Whether a successful result of ``name`` may be reused within the TTL."""
    if not ctx.registry.has(name) or not ctx.registry.get(name).cacheable:
        return False
    if agent == SUPERVISOR:
        return True
    return name not in ctx.specialist(agent).write_tools


def _loop_update(message: AIMessage, loop: LoopDetectedError) -> dict:
    skipped = [
        ToolMessage(
            content=LOOP_SKIPPED_TEXT,
            tool_call_id=call["id"],
            name=call["name"],
            status="error",
        )
        for call in message.tool_calls
    ]
    final = loop.prior_text or loop.user_message
    return {
        "messages": [*skipped, AIMessage(content=final)],
        "final_response": final,
        "outcome": TurnOutcome.LOOP_DETECTED,
        "next_node": END,
    }


async def tools_node(state: AgentState, config: RunnableConfig, writer: StreamWriter) -> dict:
    """
    Execute the pending tool calls.

    Args:
        state: Current agent state; the last message carries the tool calls
        config: Graph config carrying the engine context
        writer: Stream writer for tool events

    Returns:
        dict: Tool messages, new cache entries, recovered handles and the
        agent that should receive the results
    """
    ctx = get_engine_context(config)
    settings = ctx.settings
    thread_id = state.get("thread_id", "")
    user_id = state.get("user_id", "")
    agent = state.get("current_agent") or SUPERVISOR
    messages = state.get("messages") or []
    last = messages[-1] if messages else None

    if not isinstance(last, AIMessage) or not last.tool_calls:
        logger.warning(
            "Tools node reached without pending tool calls",
            extra={"thread_id": thread_id, "node": TOOLS_NODE},
        )
        return {"next_node": agent}

    with telemetry.start_span(
        name=TOOLS_NODE,
        kind=SpanKind.AGENT_NODE,
        attributes={"node": TOOLS_NODE, "thread_id": thread_id, "agent": agent},
    ) as span:
        try:
            check_for_loop(messages, settings.loop_window)
        except LoopDetectedError as loop:
            span.set_attribute("loop.detected", True)
            logger.warning(
                f"Loop detected on {loop.tool_name}; ending turn",
                extra={"thread_id": thread_id, "node": TOOLS_NODE, "tool_name": loop.tool_name},
            )
            return _loop_update(last, loop)

        permitted = permitted_tools(ctx, agent)
        cache = state.get("tool_cache") or {}
        now = ctx.clock()
        approved = is_approved_replay(last)

        results: Dict[str, ToolMessage] = {}
        keys: Dict[str, str] = {}
        first_by_key: Dict[str, str] = {}
        duplicates: Dict[str, str] = {}
        from_cache: set = set()
        to_execute = []

        for call in last.tool_calls:
            name = call["name"]
            emit(
                writer,
                EventType.TOOL_STARTED,
                TOOLS_NODE,
                tool=name,
                call_id=call["id"],
                args=call.get("args") or {},
            )

            if ctx.registry.has(name) and name not in permitted:
                results[call["id"]] = error_tool_message(
                    call,
                    ToolError(
                        category=ErrorCategory.INVALID_REQUEST,
                        code="TOOL_NOT_PERMITTED",
                        message=f"Tool '{name}' is not available to {agent}.",
                    ),
                )
                continue

            if approved or not is_cacheable(ctx, agent, name):
                to_execute.append(call)
                continue

            key = cache_key(name, call.get("args"))
            keys[call["id"]] = key
            cached = lookup(cache, key, now, settings.cache_ttl_seconds)
            if cached is not None:
                logger.info(
                    f"Cache hit for {name}",
                    extra={"thread_id": thread_id, "node": TOOLS_NODE, "tool_name": name},
                )
                results[call["id"]] = ToolMessage(
                    content=cached, tool_call_id=call["id"], name=name
                )
                from_cache.add(call["id"])
            elif key in first_by_key:
                duplicates[call["id"]] = first_by_key[key]
            else:
                first_by_key[key] = call["id"]
                to_execute.append(call)

        def context_for(call) -> ToolContext:
            return ToolContext(
                thread_id=thread_id,
                user_id=user_id,
                call_id=call["id"],
                result_store=ctx.result_store,
                resource_handles=dict(state.get("resource_handles") or {}),
            )

        outcomes = await execute_batch(
            to_execute, ctx.registry, context_for, settings.tool_timeout_seconds
        )

        completed_at = ctx.clock()
        new_entries: Dict[str, dict] = {}
        handles: Dict[str, str] = {}
        succeeded: set = set()
        for outcome in outcomes:
            call_id = outcome.call["id"]
            results[call_id] = outcome.message
            if not outcome.ok:
                continue
            succeeded.add(call_id)
            content = content_to_text(outcome.message.content)
            handles.update(handles_from_tool_result(outcome.call["name"], content))

        final: Dict[str, ToolMessage] = {}
        ordered: List[ToolMessage] = []
        for call in last.tool_calls:
            call_id = call["id"]
            if call_id in duplicates:
                # Sources always precede their duplicates in call order
                source = final[duplicates[call_id]]
                message = ToolMessage(
                    content=source.content,
                    tool_call_id=call_id,
                    name=source.name,
                    status=source.status,
                    additional_kwargs=dict(source.additional_kwargs),
                )
            else:
                message = results[call_id]
                tool = ctx.registry.get(call["name"]) if ctx.registry.has(call["name"]) else None
                if tool is None or tool.evict_results:
                    message = evict_if_oversized(
                        message,
                        thread_id=thread_id,
                        store=ctx.result_store,
                        threshold=settings.eviction_threshold_chars,
                        preview_chars=settings.eviction_preview_chars,
                    )
            final[call_id] = message
            # Only the in-band content is cached; evicted payloads stay in the result store
            if call_id in succeeded and call_id in keys:
                new_entries[keys[call_id]] = make_entry(
                    content_to_text(message.content), completed_at
                )
            ordered.append(message)
            emit(
                writer,
                EventType.TOOL_COMPLETED,
                TOOLS_NODE,
                tool=call["name"],
                call_id=call["id"],
                status=message.status,
                cached=call["id"] in from_cache,
                evicted=bool(message.additional_kwargs.get("is_evicted")),
            )

        span.set_attributes(
            {
                "tools.requested": len(last.tool_calls),
                "tools.executed": len(to_execute),
                "tools.cache_hits": len(from_cache),
            }
        )

    return {
        "messages": ordered,
        "tool_cache": new_entries,
        "resource_handles": handles,
        "next_node": agent,
    }
