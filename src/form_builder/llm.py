from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

ChatProviderName = Literal["openai", "anthropic"]

API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def load_env_file(repo_root: Path | None = None) -> None:
    """Load a ``.env`` file from ``repo_root`` (or cwd) without overriding the environment."""
    repo = repo_root if repo_root is not None else Path.cwd()
    env_path = repo / ".env"
    if env_path.is_file():
        load_dotenv(env_path, override=False)


def find_api_key(provider: ChatProviderName, repo_root: Path | None = None) -> str | None:
    load_env_file(repo_root)
    key = os.getenv(API_KEY_ENV_VARS[provider], "").strip()
    return key or None


def ensure_api_key(provider: ChatProviderName, repo_root: Path | None = None) -> str:
    """Return the API key for ``provider`` from the environment or ``.env``.

    Raises:
        RuntimeError: If the key is unavailable after all sources are checked.
    """
    key = find_api_key(provider, repo_root=repo_root)
    if key is None:
        raise RuntimeError(f"{API_KEY_ENV_VARS[provider]} is required for the '{provider}' provider")
    return key


def get_chat_model(
    *,
    provider: ChatProviderName,
    model_name: str,
    temperature: float = 0.0,
    settings: RuntimeSettings | None = None,
    api_key: str | None = None,
    repo_root: Path | None = None,
) -> BaseChatModel:
    """Construct a LangChain chat model for ``provider`` with production defaults.

    Timeouts and retries are configured on the client here; the interpreter
    itself never retries.

    Raises:
        ValueError: If model_name is blank or the provider is not supported.
        RuntimeError: If the provider's API key is not available.
    """
    if not model_name or not model_name.strip():
        raise ValueError("model_name must be a non-empty string")
    effective = settings if settings is not None else RuntimeSettings.from_env()
    key = api_key if api_key is not None else ensure_api_key(provider, repo_root=repo_root)

    kwargs: dict[str, Any] = {
        "model": model_name,
        "temperature": temperature,
        "timeout": effective.provider_timeout,
        "max_retries": effective.provider_max_retries,
        "api_key": key,
    }
    if provider == "openai":
        return ChatOpenAI(max_completion_tokens=effective.max_completion_tokens, **kwargs)
    if provider == "anthropic":
        return ChatAnthropic(max_tokens=effective.max_completion_tokens, **kwargs)
    raise ValueError(f"Unsupported chat provider: {provider!r}")
