"""Unit test environment helpers."""

import os

import pytest

from orchestrator.telemetry import InMemoryTelemetryBackend, telemetry


@pytest.fixture(autouse=True)
def _minimal_env(monkeypatch):
    """Set minimal env defaults for unit tests without external deps."""
    key = os.getenv("OPENAI_API_KEY")
    placeholders = {"<REPLACE_ME>", "changeme", "your_api_key_here"}
    if not key or key.strip() in placeholders or key.startswith("<"):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("LLM_MODEL", "gpt-4o")
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    for name in list(os.environ):
        if name.startswith("ORCHESTRATOR_"):
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def telemetry_backend():
    """Route spans to an in-memory backend for the duration of a test."""
    backend = InMemoryTelemetryBackend()
    telemetry.set_backend(backend)
    yield backend
