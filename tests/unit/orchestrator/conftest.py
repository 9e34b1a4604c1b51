"""Shared fixtures for orchestrator engine tests."""

import pytest

from orchestrator.checkpoint import InMemoryCheckpointStore
from orchestrator.config import EngineSettings
from orchestrator.engine import Orchestrator
from orchestrator.tools.registry import ToolRegistry
from tests._support.orchestrator_fakes import FakeClock, ScriptedChatModel


@pytest.fixture
def clock():
    """Manually advanced clock shared by the engine and the test."""
    return FakeClock()


@pytest.fixture
def checkpoint_store():
    """Fresh in-memory checkpoint store."""
    return InMemoryCheckpointStore()


@pytest.fixture
def make_engine(clock, checkpoint_store):
    """Build an engine around a scripted model and a set of mock tools."""

    def _make(script=(), tools=(), store=None, **overrides):
        settings = EngineSettings(retry_base_delay=0.0, retry_max_delay=0.0, **overrides)
        model = ScriptedChatModel(script)
        engine = Orchestrator(
            model,
            ToolRegistry(tools),
            settings=settings,
            checkpoint_store=store if store is not None else checkpoint_store,
            clock=clock,
        )
        return engine, model

    return _make
