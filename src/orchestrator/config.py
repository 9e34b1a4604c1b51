"""Configuration for the orchestration engine.

Typed environment getters plus the ``EngineSettings`` bundle consumed by the
engine, nodes and execution layer.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from orchestrator.errors import ConfigurationError


def get_env_str(name: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """Get an environment variable as a string."""
    value = os.getenv(name)
    if value is None:
        if required:
            raise ConfigurationError(f"Environment variable '{name}' is required but not set.")
        return default
    return value


def get_env_int(name: str, default: Optional[int] = None, required: bool = False) -> Optional[int]:
    """Get an environment variable as an integer."""
    value = os.getenv(name)
    if value is None:
        if required:
            raise ConfigurationError(f"Environment variable '{name}' is required but not set.")
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"Environment variable '{name}' must be an integer, got '{value}'."
        )


def get_env_float(
    name: str, default: Optional[float] = None, required: bool = False
) -> Optional[float]:
    """Get an environment variable as a float."""
    value = os.getenv(name)
    if value is None:
        if required:
            raise ConfigurationError(f"Environment variable '{name}' is required but not set.")
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable '{name}' must be a float, got '{value}'.")


CHECKPOINT_BACKENDS = ("memory", "file")


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for a single engine instance.

    Attributes:
        cache_ttl_seconds: How long a successful tool result may be reused.
        eviction_threshold_chars: Tool results longer than this are evicted.
        eviction_preview_chars: Characters kept in-band for an evicted result.
        result_store_max_entries: Capacity of the in-memory evicted-result store.
        loop_window: How many AI turns back the loop guard looks.
        max_iterations: Graph recursion limit for a single turn.
        model_timeout_seconds: Timeout for one model invocation attempt.
        tool_timeout_seconds: Timeout for one tool invocation.
        checkpoint_timeout_seconds: Timeout for one checkpoint read or write.
        model_max_attempts: Attempts for transient model failures.
        retry_base_delay: Initial backoff delay in seconds.
        retry_max_delay: Backoff ceiling in seconds.
        checkpoint_backend: ``memory`` or ``file``.
        checkpoint_dir: Directory for the file checkpoint backend.
        result_store_dir: Directory for file-backed evicted results (None keeps them in memory).
        history_max_messages: Messages sent to the model per call.
    """

    cache_ttl_seconds: float = 300.0
    eviction_threshold_chars: int = 15000
    eviction_preview_chars: int = 1000
    result_store_max_entries: int = 256
    loop_window: int = 2
    max_iterations: int = 25
    model_timeout_seconds: float = 60.0
    tool_timeout_seconds: float = 30.0
    checkpoint_timeout_seconds: float = 5.0
    model_max_attempts: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0
    checkpoint_backend: str = "memory"
    checkpoint_dir: str = ".orchestrator/checkpoints"
    result_store_dir: Optional[str] = None
    history_max_messages: int = 30

    def __post_init__(self):
        """Reject settings that cannot produce a working engine."""
        if self.checkpoint_backend not in CHECKPOINT_BACKENDS:
            raise ConfigurationError(
                f"Unsupported checkpoint backend '{self.checkpoint_backend}'. "
                f"Supported: {list(CHECKPOINT_BACKENDS)}"
            )
        if self.eviction_preview_chars >= self.eviction_threshold_chars:
            raise ConfigurationError(
                "Eviction preview must be shorter than the eviction threshold."
            )
        if self.loop_window < 1:
            raise ConfigurationError("Loop window must be at least 1.")
        if self.model_max_attempts < 1:
            raise ConfigurationError("Model retry attempts must be at least 1.")
        if self.max_iterations < 1:
            raise ConfigurationError("Max iterations must be at least 1.")
        if self.history_max_messages < 2:
            raise ConfigurationError("History window must keep at least 2 messages.")

    @property
    def checkpoint_path(self) -> Path:
        """Resolved checkpoint directory."""
        return Path(self.checkpoint_dir).expanduser()

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from ``ORCHESTRATOR_*`` environment variables."""
        load_dotenv()
        defaults = cls()
        return cls(
            cache_ttl_seconds=get_env_float(
                "ORCHESTRATOR_CACHE_TTL_SECONDS", defaults.cache_ttl_seconds
            ),
            eviction_threshold_chars=get_env_int(
                "ORCHESTRATOR_EVICTION_THRESHOLD_CHARS", defaults.eviction_threshold_chars
            ),
            eviction_preview_chars=get_env_int(
                "ORCHESTRATOR_EVICTION_PREVIEW_CHARS", defaults.eviction_preview_chars
            ),
            result_store_max_entries=get_env_int(
                "ORCHESTRATOR_RESULT_STORE_MAX_ENTRIES", defaults.result_store_max_entries
            ),
            loop_window=get_env_int("ORCHESTRATOR_LOOP_WINDOW", defaults.loop_window),
            max_iterations=get_env_int("ORCHESTRATOR_MAX_ITERATIONS", defaults.max_iterations),
            model_timeout_seconds=get_env_float(
                "ORCHESTRATOR_MODEL_TIMEOUT_SECONDS", defaults.model_timeout_seconds
            ),
            tool_timeout_seconds=get_env_float(
                "ORCHESTRATOR_TOOL_TIMEOUT_SECONDS", defaults.tool_timeout_seconds
            ),
            checkpoint_timeout_seconds=get_env_float(
                "ORCHESTRATOR_CHECKPOINT_TIMEOUT_SECONDS", defaults.checkpoint_timeout_seconds
            ),
            model_max_attempts=get_env_int(
                "ORCHESTRATOR_MODEL_MAX_ATTEMPTS", defaults.model_max_attempts
            ),
            retry_base_delay=get_env_float(
                "ORCHESTRATOR_RETRY_BASE_DELAY", defaults.retry_base_delay
            ),
            retry_max_delay=get_env_float("ORCHESTRATOR_RETRY_MAX_DELAY", defaults.retry_max_delay),
            checkpoint_backend=(
                get_env_str("ORCHESTRATOR_CHECKPOINT_BACKEND", defaults.checkpoint_backend) or ""
            ).lower(),
            checkpoint_dir=get_env_str("ORCHESTRATOR_CHECKPOINT_DIR", defaults.checkpoint_dir),
            result_store_dir=get_env_str("ORCHESTRATOR_RESULT_STORE_DIR"),
            history_max_messages=get_env_int(
                "ORCHESTRATOR_HISTORY_MAX_MESSAGES", defaults.history_max_messages
            ),
        )
