"""LLM client factory.

The engine only needs a chat model that supports ``bind_tools`` and
``ainvoke``; this factory builds the default OpenAI-backed one from env.
"""

from typing import Optional

from dotenv import load_dotenv
from langchain_core.language_models.chat_models import BaseChatModel

from orchestrator.config import get_env_float, get_env_str
from orchestrator.errors import ConfigurationError

DEFAULT_MODEL = "gpt-4o"

_PLACEHOLDER_KEYS = {"<REPLACE_ME>", "changeme", "your_api_key_here"}


def get_llm_client(
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    timeout: Optional[float] = None,
) -> BaseChatModel:
    """Get the chat model used by the supervisor and specialists.

    Args:
        model: Model name. Defaults to LLM_MODEL env var or ``gpt-4o``.
        temperature: Sampling temperature. Defaults to LLM_TEMPERATURE or 0.
        timeout: Client-side request timeout in seconds.

    Returns:
        BaseChatModel: LangChain chat model instance.

    Raises:
        ConfigurationError: If the API key is missing or a placeholder.
    """
    load_dotenv()

    key = get_env_str("OPENAI_API_KEY")
    if not key or key.strip() in _PLACEHOLDER_KEYS or key.startswith("<"):
        raise ConfigurationError(
            "OPENAI_API_KEY is missing or set to a placeholder value. "
            "Please update your .env file with a valid OpenAI API key."
        )

    from langchain_openai import ChatOpenAI

    resolved_temperature = (
        temperature if temperature is not None else get_env_float("LLM_TEMPERATURE", 0.0)
    )
    kwargs = {
        "model": model or get_env_str("LLM_MODEL", DEFAULT_MODEL),
        "temperature": resolved_temperature,
        # Retries are owned by the engine
        "max_retries": 0,
    }
    base_url = get_env_str("OPENAI_BASE_URL")
    if base_url:
        kwargs["base_url"] = base_url
    if timeout is not None:
        kwargs["timeout"] = timeout
    return ChatOpenAI(**kwargs)
