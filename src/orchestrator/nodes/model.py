"""Model invocation shared by the supervisor and specialist nodes."""

import asyncio
import logging
from typing import List, Sequence

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage

from orchestrator.context import EngineContext
from orchestrator.telemetry import SpanKind, telemetry
from orchestrator.utils.messages import trim_history
from orchestrator.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


async def invoke_model(
    ctx: EngineContext,
    *,
    agent: str,
    thread_id: str,
    system_prompt: str,
    history: Sequence[BaseMessage],
    tool_schemas: List[dict],
) -> AIMessage:
    """Call the model once with bounded retries and a per-attempt timeout.

    Raises:
        TransientExternalError: When every attempt failed transiently.
    """
    settings = ctx.settings
    bound = ctx.model.bind_tools(tool_schemas) if tool_schemas else ctx.model
    prompt = [
        SystemMessage(content=system_prompt),
        *trim_history(history, settings.history_max_messages),
    ]

    async def _call() -> AIMessage:
        return await asyncio.wait_for(bound.ainvoke(prompt), settings.model_timeout_seconds)

    with telemetry.start_span(
        name=f"llm.{agent}",
        kind=SpanKind.LLM_CALL,
        attributes={"agent": agent, "thread_id": thread_id, "tools.count": len(tool_schemas)},
    ) as span:
        response = await retry_with_backoff(
            _call,
            operation_name=f"model_call:{agent}",
            max_attempts=settings.model_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            extra_context={"thread_id": thread_id, "node": agent},
        )
        span.set_attribute("llm.tool_calls", len(getattr(response, "tool_calls", None) or []))

    if not isinstance(response, AIMessage):
        response = AIMessage(content=getattr(response, "content", str(response)))
    return response
