"""Concurrent tool execution.

Each call in a batch runs independently under its own timeout. A failure is
turned into an error-shaped ``ToolMessage`` instead of propagating, so one
failing call never aborts the rest of the batch. Calls are never retried here.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Sequence

from langchain_core.messages import ToolMessage
from langchain_core.messages.tool import ToolCall

from orchestrator.errors import (
    ErrorCategory,
    ToolError,
    ToolExecutionError,
    truncate_error_message,
)
from orchestrator.telemetry import SpanKind, telemetry
from orchestrator.tools.registry import ToolContext, ToolRegistry
from orchestrator.utils.messages import serialize_tool_result

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """Result of one tool call, tied back to its originating call."""

    call: ToolCall
    message: ToolMessage
    ok: bool
    duration_ms: float


def error_tool_message(call: ToolCall, error: ToolError) -> ToolMessage:
    """Error-shaped tool message for a failed call."""
    return ToolMessage(
        content=error.to_content(),
        tool_call_id=call["id"],
        name=call["name"],
        status="error",
    )


async def execute_tool_call(
    call: ToolCall,
    registry: ToolRegistry,
    context: ToolContext,
    timeout: float,
) -> ToolOutcome:
    """Run a single tool call; never raises for tool-local failures."""
    started = time.monotonic()
    log_extra = {"thread_id": context.thread_id, "tool_name": call["name"], "call_id": call["id"]}

    with telemetry.start_span(
        name=f"tool.{call['name']}",
        kind=SpanKind.TOOL_CALL,
        attributes={"tool.name": call["name"], "thread_id": context.thread_id},
    ) as span:
        try:
            tool = registry.get(call["name"])
            result = await asyncio.wait_for(tool.invoke(call.get("args") or {}, context), timeout)
            message = ToolMessage(
                content=serialize_tool_result(result),
                tool_call_id=call["id"],
                name=call["name"],
            )
            ok = True
        except asyncio.TimeoutError:
            logger.warning(f"Tool call timed out after {timeout}s", extra=log_extra)
            error = ToolError(
                category=ErrorCategory.TIMEOUT,
                code="TOOL_TIMEOUT",
                message=f"Tool '{call['name']}' did not respond within {timeout:g} seconds.",
                retryable=True,
            )
            message = error_tool_message(call, error)
            ok = False
        except ToolExecutionError as exc:
            logger.warning(
                f"Tool call failed: {exc}",
                extra={**log_extra, "exception_type": type(exc).__name__},
            )
            message = error_tool_message(call, exc.to_tool_error())
            ok = False
        except Exception as exc:
            logger.error(
                f"Unexpected error while running tool: {type(exc).__name__}",
                extra={**log_extra, "exception_type": type(exc).__name__},
                exc_info=True,
            )
            span.record_error(exc)
            error = ToolError(
                category=ErrorCategory.INTERNAL,
                code="TOOL_INTERNAL_ERROR",
                message=truncate_error_message(
                    f"Tool '{call['name']}' failed unexpectedly: {type(exc).__name__}: {exc}"
                ),
            )
            message = error_tool_message(call, error)
            ok = False

        duration_ms = (time.monotonic() - started) * 1000
        span.set_attribute("tool.ok", ok)
        span.set_attribute("tool.duration_ms", duration_ms)

    return ToolOutcome(call=call, message=message, ok=ok, duration_ms=duration_ms)


async def execute_batch(
    calls: Sequence[ToolCall],
    registry: ToolRegistry,
    context_for: Callable[[ToolCall], ToolContext],
    timeout: float,
) -> List[ToolOutcome]:
    """Fan out a batch of calls concurrently; results keep the input order."""
    if not calls:
        return []
    return list(
        await asyncio.gather(
            *(execute_tool_call(call, registry, context_for(call), timeout) for call in calls)
        )
    )
