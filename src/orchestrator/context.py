"""Explicit per-engine context handed to every node invocation."""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from langchain_core.runnables import RunnableConfig

from orchestrator.agents.catalog import DEFAULT_SPECIALISTS, SpecialistSpec
from orchestrator.checkpoint.base import CheckpointStore
from orchestrator.config import EngineSettings
from orchestrator.errors import ConfigurationError
from orchestrator.execution.result_store import ResultStore
from orchestrator.tools.registry import ToolRegistry

CONTEXT_KEY = "engine_context"


@dataclass
class EngineContext:
    """Collaborators shared by the nodes of one engine instance.

    Attributes:
        registry: Closed tool registry.
        model: Chat model supporting ``bind_tools`` and ``ainvoke``.
        checkpoint_store: Snapshot persistence.
        result_store: Storage for evicted tool results.
        settings: Engine tunables.
        specialists: Specialist catalog.
        clock: Wall clock used for cache timestamps.
    """

    registry: ToolRegistry
    model: Any
    checkpoint_store: CheckpointStore
    result_store: ResultStore
    settings: EngineSettings = field(default_factory=EngineSettings)
    specialists: Tuple[SpecialistSpec, ...] = DEFAULT_SPECIALISTS
    clock: Callable[[], float] = time.time

    def specialist(self, name: str) -> SpecialistSpec:
        """Look up a specialist by node name."""
        for spec in self.specialists:
            if spec.name == name:
                return spec
        raise ConfigurationError(f"Unknown specialist '{name}'")

    def specialist_for_route(self, route_name: str) -> Optional[SpecialistSpec]:
        """Look up a specialist by its supervisor route value."""
        for spec in self.specialists:
            if spec.route_name == route_name:
                return spec
        return None

    def runnable_config(self, thread_id: str, user_id: str) -> Dict[str, Any]:
        """Graph config carrying this context and the turn identity."""
        return {
            "configurable": {
                CONTEXT_KEY: self,
                "thread_id": thread_id,
                "user_id": user_id,
            },
            "recursion_limit": self.settings.max_iterations,
        }


def get_engine_context(config: Optional[RunnableConfig]) -> EngineContext:
    """Extract the engine context from a node's config.

    Raises:
        ConfigurationError: If the graph was invoked without a context.
    """
    ctx = ((config or {}).get("configurable") or {}).get(CONTEXT_KEY)
    if not isinstance(ctx, EngineContext):
        raise ConfigurationError("Graph invoked without an engine context in its config.")
    return ctx
