from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage

from .llm import ChatProviderName, find_api_key, get_chat_model
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRequest:
    prompt: str
    model: str
    temperature: float | None = None


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    meta: dict[str, Any] = field(default_factory=dict)


class LlmProvider(Protocol):
    """Uniform text-generation backend used by PromptTask nodes."""

    async def execute(self, request: ProviderRequest) -> ProviderResponse:
        ...


ProviderRegistry = dict[str, LlmProvider]

MOCK_RESPONSE: dict[str, str] = {
    "sentiment": "neutral",
    "reply": "Thank you for sharing this feedback. We are reviewing your concern and will follow up shortly.",
}


class MockProvider:
    """Offline provider that always answers with the same analysis payload."""

    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self.payload = dict(MOCK_RESPONSE if payload is None else payload)

    async def execute(self, request: ProviderRequest) -> ProviderResponse:
        logger.debug("Mock provider answering model=%s", request.model)
        return ProviderResponse(text=json.dumps(self.payload), meta={"provider": "mock"})


def message_text(message: BaseMessage) -> str:
    """Flatten chat message content into plain text."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts) if parts else "{}"


ChatModelFactory = Callable[[str, float], BaseChatModel]


class ChatModelProvider:
    """Adapts a LangChain chat model backend to the provider interface.

    A chat model is built per request because the model name and temperature
    come from each PromptTask's model policy.
    """

    def __init__(self, name: ChatProviderName, factory: ChatModelFactory) -> None:
        self.name = name
        self.factory = factory

    async def execute(self, request: ProviderRequest) -> ProviderResponse:
        temperature = request.temperature if request.temperature is not None else 0.0
        chat_model = self.factory(request.model, temperature)
        logger.debug("Invoking %s model=%s temperature=%s", self.name, request.model, temperature)
        message = await chat_model.ainvoke([HumanMessage(content=request.prompt)])
        metadata = getattr(message, "response_metadata", {}) or {}
        return ProviderResponse(
            text=message_text(message),
            meta={
                "id": message.id,
                "model": metadata.get("model_name") or metadata.get("model") or request.model,
            },
        )


def _chat_model_factory(
    provider: ChatProviderName,
    api_key: str,
    settings: RuntimeSettings,
) -> ChatModelFactory:
    def build(model_name: str, temperature: float) -> BaseChatModel:
        return get_chat_model(
            provider=provider,
            model_name=model_name,
            temperature=temperature,
            settings=settings,
            api_key=api_key,
        )

    return build


def create_provider_registry(
    settings: RuntimeSettings | None = None,
    *,
    repo_root: Path | None = None,
) -> ProviderRegistry:
    """Build the provider registry: ``mock`` always, real backends only when their key is configured."""
    effective = settings if settings is not None else RuntimeSettings.from_env()
    providers: ProviderRegistry = {"mock": MockProvider()}
    chat_providers: tuple[ChatProviderName, ...] = ("openai", "anthropic")
    for name in chat_providers:
        api_key = find_api_key(name, repo_root=repo_root)
        if api_key is None:
            logger.info("Provider '%s' disabled: no API key configured", name)
            continue
        providers[name] = ChatModelProvider(name, _chat_model_factory(name, api_key, effective))
    return providers
