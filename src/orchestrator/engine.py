"""Engine facade: runs turns, streams events and persists checkpoints."""

import asyncio
import itertools
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage, convert_to_messages
from langgraph.errors import GraphRecursionError
from pydantic import BaseModel, Field

from orchestrator.agents.catalog import DEFAULT_SPECIALISTS, SpecialistSpec
from orchestrator.approval import (
    APPROVED_MESSAGE,
    REJECTED_MESSAGE,
    REJECTION_NOTICE,
    ApprovalDecision,
    parse_decision,
)
from orchestrator.checkpoint import CheckpointStore, create_checkpoint_store
from orchestrator.config import EngineSettings
from orchestrator.context import EngineContext
from orchestrator.errors import (
    ConcurrentTurnError,
    ConfigurationError,
    ErrorCategory,
    IterationLimitError,
    OrchestratorError,
    ToolError,
)
from orchestrator.events import EventType, StreamEvent
from orchestrator.execution.cache import prune_expired
from orchestrator.execution.executor import error_tool_message
from orchestrator.execution.result_store import FileResultStore, InMemoryResultStore, ResultStore
from orchestrator.graph import create_workflow
from orchestrator.models.outcome import TurnOutcome
from orchestrator.state import (
    SUPERVISOR,
    AgentState,
    deserialize_state,
    initial_state,
    serialize_state,
)
from orchestrator.telemetry import SpanKind, telemetry
from orchestrator.tools.builtin import builtin_tools
from orchestrator.tools.registry import ToolRegistry
from orchestrator.utils.messages import latest_ai_text, unanswered_tool_calls

logger = logging.getLogger(__name__)

CANCELLED_TEXT = (
    "The request was cancelled before it finished. Nothing after the last saved step was kept."
)
UNEXPECTED_ERROR_TEXT = "Something went wrong while handling your request. Please try again."
INTERRUPTED_TOOL_TEXT = (
    "This call did not complete because the previous request was interrupted. "
    "It may not have run."
)

_DONE = object()


class TurnRequest(BaseModel):
    """Caller input for one turn.

    ``history`` only seeds a thread that has no checkpoint yet. An
    ``approval_decision`` answers a pending approval on the same thread.
    """

    thread_id: str
    user_id: Optional[str] = None
    message: Optional[str] = None
    history: Optional[List[Any]] = None
    approval_decision: Optional[str] = None


class TurnResult(BaseModel):
    """Collected outcome of a turn."""

    thread_id: str
    outcome: TurnOutcome
    response: Optional[str] = None
    pending_approval: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    events: List[StreamEvent] = Field(default_factory=list)


class Orchestrator:
    """Multi-agent engine bound to one model, tool registry and set of stores.

    Instances share no mutable state, so several engines can run side by side
    (e.g. in tests) without interfering.
    """

    def __init__(
        self,
        model: Any,
        registry: ToolRegistry,
        *,
        settings: Optional[EngineSettings] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        result_store: Optional[ResultStore] = None,
        specialists: Sequence[SpecialistSpec] = DEFAULT_SPECIALISTS,
        clock: Callable[[], float] = time.time,
    ):
        """Wire the engine context and compile the workflow."""
        if model is None:
            raise ConfigurationError("A chat model is required.")
        settings = settings or EngineSettings()

        for tool in builtin_tools():
            if not registry.has(tool.name):
                registry.register(tool)

        if result_store is None:
            if settings.result_store_dir:
                result_store = FileResultStore(settings.result_store_dir)
            else:
                result_store = InMemoryResultStore(settings.result_store_max_entries)

        self.context = EngineContext(
            registry=registry,
            model=model,
            checkpoint_store=checkpoint_store or create_checkpoint_store(settings),
            result_store=result_store,
            settings=settings,
            specialists=tuple(specialists),
            clock=clock,
        )
        self._graph = create_workflow(self.context.specialists).compile()
        self._active: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_env(cls, registry: ToolRegistry, model: Any = None, **kwargs) -> "Orchestrator":
        """Build an engine from environment settings and the default model factory."""
        settings = EngineSettings.from_env()
        if model is None:
            from orchestrator.llm_client import get_llm_client

            model = get_llm_client(timeout=settings.model_timeout_seconds)
        return cls(model, registry, settings=settings, **kwargs)

    @property
    def settings(self) -> EngineSettings:
        """Settings of this engine instance."""
        return self.context.settings

    async def astream_turn(self, request: TurnRequest) -> AsyncIterator[StreamEvent]:
        """Run one turn, yielding events as they happen.

        The last event is always one of ``turn_completed``,
        ``approval_required`` or ``error``.
        """
        thread_id = request.thread_id
        if thread_id in self._active:
            error = ConcurrentTurnError(f"Turn already in progress for thread {thread_id}")
            logger.warning(str(error), extra={"thread_id": thread_id, "node": None})
            yield _error_event(thread_id, 0, error)
            return

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run_turn(request, queue.put_nowait))
        self._active[thread_id] = task
        try:
            while True:
                event = await queue.get()
                if event is _DONE:
                    break
                yield event
        finally:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            if self._active.get(thread_id) is task:
                del self._active[thread_id]

    async def run_turn(self, request: TurnRequest) -> TurnResult:
        """Run one turn to completion and collect its events."""
        events = [event async for event in self.astream_turn(request)]
        terminal = events[-1]
        result = TurnResult(thread_id=request.thread_id, outcome=TurnOutcome.ERROR, events=events)

        if terminal.type == EventType.APPROVAL_REQUIRED:
            result.outcome = TurnOutcome.APPROVAL_REQUIRED
            result.response = terminal.data.get("message")
            result.pending_approval = dict(terminal.data)
        elif terminal.type == EventType.TURN_COMPLETED:
            result.outcome = TurnOutcome(terminal.data.get("outcome", TurnOutcome.COMPLETED))
            result.response = terminal.data.get("response")
        else:
            if terminal.data.get("category") == ErrorCategory.CANCELLED.value:
                result.outcome = TurnOutcome.CANCELLED
            result.response = terminal.data.get("message")
            result.error = dict(terminal.data)
        return result

    def cancel(self, thread_id: str) -> bool:
        """Abort the in-flight turn for a thread.

        The last committed checkpoint is left untouched. Returns whether a turn
        was running.
        """
        task = self._active.get(thread_id)
        if task is None or task.done():
            return False
        logger.info("Cancelling turn", extra={"thread_id": thread_id, "node": None})
        task.cancel()
        return True

    async def get_state(self, thread_id: str) -> Optional[AgentState]:
        """Return the last committed state for a thread, if any."""
        checkpoint = await self._safe_get(thread_id)
        if checkpoint is None:
            return None
        return deserialize_state(checkpoint.state)

    async def delete_thread(self, thread_id: str) -> None:
        """Abandon a thread: drop its checkpoint and evicted payloads."""
        await asyncio.wait_for(
            self.context.checkpoint_store.delete(thread_id),
            self.settings.checkpoint_timeout_seconds,
        )
        self.context.result_store.delete_thread(thread_id)

    async def _run_turn(self, request: TurnRequest, sink: Callable[[Any], None]) -> None:
        thread_id = request.thread_id
        seq = itertools.count()
        progress: Dict[str, Optional[str]] = {"node": None}

        def publish(event_type: EventType, node: Optional[str] = None, **data: Any) -> None:
            sink(
                StreamEvent(
                    type=event_type, thread_id=thread_id, seq=next(seq), node=node, data=data
                )
            )

        def publish_error(error: OrchestratorError) -> None:
            sink(_error_event(thread_id, next(seq), error, node=progress["node"]))

        try:
            self._validate_identity(request)
            decision = parse_decision(request.approval_decision)
            with telemetry.start_span(
                name="turn",
                kind=SpanKind.TURN,
                attributes={"thread_id": thread_id, "approval_decision": request.approval_decision},
            ):
                state = await self._load_state(request)
                pending = state.get("pending_approval")
                if decision == ApprovalDecision.REJECTED and pending:
                    await self._reject(state, request, publish)
                    return

                turn_input = self._prepare_turn(state, request, decision)
                final_state = await self._drive(turn_input, publish, progress)
                self._publish_final(final_state, publish)
        except asyncio.CancelledError:
            logger.warning(
                "Turn cancelled", extra={"thread_id": thread_id, "node": progress["node"]}
            )
            publish(
                EventType.ERROR,
                node=progress["node"],
                message=CANCELLED_TEXT,
                category=ErrorCategory.CANCELLED.value,
                error_type="CancelledError",
            )
            raise
        except GraphRecursionError as exc:
            error = IterationLimitError(str(exc))
            logger.error(
                "Turn exceeded the iteration limit",
                extra={"thread_id": thread_id, "node": progress["node"]},
            )
            publish_error(error)
        except OrchestratorError as exc:
            logger.error(
                f"Turn failed: {exc}",
                extra={
                    "thread_id": thread_id,
                    "node": progress["node"],
                    "exception_type": type(exc).__name__,
                },
                exc_info=not isinstance(exc, ConfigurationError),
            )
            publish_error(exc)
        except Exception as exc:
            logger.error(
                f"Unexpected error during turn: {exc}",
                extra={
                    "thread_id": thread_id,
                    "node": progress["node"],
                    "exception_type": type(exc).__name__,
                },
                exc_info=True,
            )
            publish_error(OrchestratorError(str(exc), user_message=UNEXPECTED_ERROR_TEXT))
        finally:
            sink(_DONE)

    def _validate_identity(self, request: TurnRequest) -> None:
        if not (request.thread_id or "").strip():
            raise ConfigurationError(
                "thread_id is required",
                user_message="This conversation could not be identified. Please start a new one.",
            )
        if not (request.user_id or "").strip():
            raise ConfigurationError(
                "user_id is required",
                user_message="I couldn't identify your account. Please sign in again.",
            )

    async def _load_state(self, request: TurnRequest) -> AgentState:
        thread_id = request.thread_id
        state = initial_state(thread_id, request.user_id)
        checkpoint = await self._safe_get(thread_id)
        if checkpoint is not None:
            state.update(deserialize_state(checkpoint.state))
            state["thread_id"] = thread_id
            state["user_id"] = request.user_id
        elif request.history:
            state["messages"] = convert_to_messages(request.history)
        return state

    def _prepare_turn(
        self, state: AgentState, request: TurnRequest, decision: Optional[ApprovalDecision]
    ) -> AgentState:
        turn: AgentState = dict(state)  # type: ignore[assignment]
        turn["tool_cache"] = prune_expired(
            state.get("tool_cache"), self.context.clock(), self.settings.cache_ttl_seconds
        )
        turn["specialists_invoked"] = []
        turn["final_response"] = None
        turn["outcome"] = None
        turn["next_node"] = None
        messages = list(state.get("messages") or [])
        messages.extend(_interrupted_results(messages, request.thread_id))
        pending = state.get("pending_approval")

        if decision == ApprovalDecision.APPROVED and pending:
            messages.append(HumanMessage(content=request.message or APPROVED_MESSAGE))
            turn["approval_decision"] = ApprovalDecision.APPROVED.value
            turn["messages"] = messages
            return turn

        if decision is not None:
            logger.warning(
                "Approval decision received with nothing pending; ignoring it",
                extra={"thread_id": request.thread_id, "node": None},
            )
        if pending:
            logger.info(
                "New message supersedes the pending action; dropping it",
                extra={"thread_id": request.thread_id, "node": None},
            )
        if not (request.message or "").strip():
            raise ConfigurationError(
                "A message is required to start a turn",
                user_message="Please enter a message.",
            )

        messages.append(HumanMessage(content=request.message))
        turn["messages"] = messages
        turn["pending_approval"] = None
        turn["approval_decision"] = None
        turn["permission_granted"] = False
        turn["current_agent"] = SUPERVISOR
        return turn

    async def _drive(
        self,
        turn_input: AgentState,
        publish: Callable[..., None],
        progress: Dict[str, Optional[str]],
    ) -> AgentState:
        thread_id = turn_input["thread_id"]
        config = self.context.runnable_config(thread_id, turn_input["user_id"])
        final_state: AgentState = turn_input
        step = 0
        stepped = False

        async for mode, chunk in self._graph.astream(
            turn_input, config, stream_mode=["updates", "values", "custom"]
        ):
            if mode == "custom":
                publish(EventType(chunk["type"]), node=chunk.get("node"), **chunk.get("data", {}))
            elif mode == "updates":
                for node_name in chunk:
                    progress["node"] = node_name
                    step += 1
                    stepped = True
            elif mode == "values":
                final_state = chunk
                if stepped:
                    await self._safe_put(
                        thread_id, chunk, {"node": progress["node"], "step": step}
                    )
                    stepped = False
        return final_state

    def _publish_final(self, state: AgentState, publish: Callable[..., None]) -> None:
        pending = state.get("pending_approval")
        outcome = state.get("outcome") or TurnOutcome.COMPLETED
        if outcome == TurnOutcome.APPROVAL_REQUIRED and pending:
            publish(
                EventType.APPROVAL_REQUIRED,
                node=pending.get("agent"),
                message=pending.get("content"),
                agent=pending.get("agent"),
                tool_calls=[
                    {"name": call["name"], "args": call.get("args") or {}}
                    for call in pending.get("tool_calls") or []
                ],
            )
            return

        response = state.get("final_response") or latest_ai_text(state.get("messages") or [])
        publish(
            EventType.TURN_COMPLETED,
            node=state.get("current_agent"),
            response=response,
            outcome=TurnOutcome(outcome).value,
            specialists=list(state.get("specialists_invoked") or []),
        )

    async def _reject(
        self, state: AgentState, request: TurnRequest, publish: Callable[..., None]
    ) -> None:
        thread_id = request.thread_id
        logger.info("Pending action rejected", extra={"thread_id": thread_id, "node": None})
        rejected: AgentState = dict(state)  # type: ignore[assignment]
        history = list(state.get("messages") or [])
        rejected["messages"] = [
            *history,
            *_interrupted_results(history, thread_id),
            HumanMessage(content=request.message or REJECTED_MESSAGE),
            AIMessage(content=REJECTION_NOTICE),
        ]
        rejected.update(
            {
                "pending_approval": None,
                "approval_decision": None,
                "permission_granted": False,
                "specialists_invoked": [],
                "final_response": REJECTION_NOTICE,
                "outcome": TurnOutcome.REJECTED,
                "next_node": None,
            }
        )
        publish(EventType.TEXT_DELTA, node=None, content=REJECTION_NOTICE)
        await self._safe_put(thread_id, rejected, {"node": "approval_rejected", "step": 1})
        publish(
            EventType.TURN_COMPLETED,
            node=None,
            response=REJECTION_NOTICE,
            outcome=TurnOutcome.REJECTED.value,
            specialists=[],
        )

    async def _safe_get(self, thread_id: str):
        with telemetry.start_span(
            name="checkpoint.get",
            kind=SpanKind.CHECKPOINT,
            attributes={"thread_id": thread_id},
        ) as span:
            try:
                checkpoint = await asyncio.wait_for(
                    self.context.checkpoint_store.get(thread_id),
                    self.settings.checkpoint_timeout_seconds,
                )
            except Exception as exc:
                span.record_error(exc)
                logger.warning(
                    f"Checkpoint read failed; starting from a fresh state: {exc}",
                    extra={
                        "thread_id": thread_id,
                        "node": None,
                        "exception_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                return None
            span.set_attribute("checkpoint.found", checkpoint is not None)
            return checkpoint

    async def _safe_put(self, thread_id: str, state: AgentState, metadata: Dict[str, Any]) -> None:
        outcome = state.get("outcome")
        metadata = {**metadata, "outcome": TurnOutcome(outcome).value if outcome else None}
        with telemetry.start_span(
            name="checkpoint.put",
            kind=SpanKind.CHECKPOINT,
            attributes={"thread_id": thread_id, "node": metadata.get("node")},
        ) as span:
            try:
                await asyncio.wait_for(
                    self.context.checkpoint_store.put(thread_id, serialize_state(state), metadata),
                    self.settings.checkpoint_timeout_seconds,
                )
            except Exception as exc:
                span.record_error(exc)
                logger.warning(
                    f"Checkpoint write failed; continuing in memory: {exc}",
                    extra={
                        "thread_id": thread_id,
                        "node": metadata.get("node"),
                        "exception_type": type(exc).__name__,
                    },
                    exc_info=True,
                )


def _interrupted_results(messages: List[Any], thread_id: str) -> List[ToolMessage]:
    """Error results for tool calls an interrupted turn never answered."""
    calls = unanswered_tool_calls(messages)
    if calls:
        logger.warning(
            "Closing tool calls left unanswered by an interrupted turn",
            extra={
                "thread_id": thread_id,
                "node": None,
                "tool_calls": [call["name"] for call in calls],
            },
        )
    error = ToolError(
        category=ErrorCategory.CANCELLED,
        code="TOOL_CALL_INTERRUPTED",
        message=INTERRUPTED_TOOL_TEXT,
    )
    return [error_tool_message(call, error) for call in calls]


def _error_event(
    thread_id: str, seq: int, error: OrchestratorError, node: Optional[str] = None
) -> StreamEvent:
    return StreamEvent(
        type=EventType.ERROR,
        thread_id=thread_id,
        seq=seq,
        node=node,
        data={
            "message": error.user_message,
            "category": error.category.value,
            "error_type": type(error).__name__,
        },
    )
