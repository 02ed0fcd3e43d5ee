from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from taskflow.settings import AppSettings


LOGGER = logging.getLogger(__name__)


class LLMCallError(RuntimeError):
    """Raised when the LLM call fails after retries."""


class MissingCredentialError(LLMCallError):
    """Raised when a provider requires an API key and none is configured."""


class OpenAIModelListError(LLMCallError):
    """Raised when listing OpenAI models fails."""


@dataclass(slots=True)
class CompletionRequest:
    prompt: str
    model: str
    max_tokens: int
    temperature: float
    api_key: str | None = None


@dataclass(slots=True)
class Completion:
    text: str
    total_tokens: int
    model: str


class CompletionProvider(Protocol):
    async def complete(self, request: CompletionRequest) -> Completion: ...


@dataclass(slots=True)
class OpenAICompletionConfig:
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 90
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.5
    provider_label: str = "OpenAI"


@dataclass(slots=True)
class OllamaCompletionConfig:
    base_url: str
    timeout_seconds: int = 90
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.5


class _RetryingChatProvider:
    """Shared retry loop around a LangChain chat model call."""

    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.5

    async def complete(self, request: CompletionRequest) -> Completion:
        model = self._build_model(request)
        messages = [HumanMessage(content=request.prompt)]
        attempts = max(1, self.retry_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await model.ainvoke(messages)
                if not isinstance(response, AIMessage):
                    raise LLMCallError(
                        f"Unexpected response type from LLM: {type(response).__name__}"
                    )
                return Completion(
                    text=self._extract_text_content(response.content),
                    total_tokens=self._extract_total_tokens(response),
                    model=request.model,
                )
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if attempt >= attempts:
                    break
                delay = self.retry_backoff_seconds * attempt
                LOGGER.debug(
                    "LLM call attempt %s/%s failed (%s). Retrying in %.1fs",
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

        raise LLMCallError(f"LLM call failed after retries: {last_error}")

    def _build_model(self, request: CompletionRequest) -> BaseChatModel:
        raise NotImplementedError

    def _extract_text_content(self, content: object) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if isinstance(item, str):
                    parts.append(item)
                elif isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        parts.append(text)
            return "".join(parts)
        return ""

    def _extract_total_tokens(self, response: AIMessage) -> int:
        usage = response.usage_metadata
        if usage and isinstance(usage.get("total_tokens"), int):
            return int(usage["total_tokens"])

        metadata = response.response_metadata or {}
        token_usage = metadata.get("token_usage")
        if isinstance(token_usage, dict) and isinstance(token_usage.get("total_tokens"), int):
            return int(token_usage["total_tokens"])
        return 0


class OpenAICompletionProvider(_RetryingChatProvider):
    """Completion provider for OpenAI-compatible chat APIs (OpenAI, OpenRouter)."""

    def __init__(self, config: OpenAICompletionConfig) -> None:
        self._config = config
        self.retry_attempts = config.retry_attempts
        self.retry_backoff_seconds = config.retry_backoff_seconds

    async def complete(self, request: CompletionRequest) -> Completion:
        if not (request.api_key or self._config.api_key):
            raise MissingCredentialError(f"{self._config.provider_label} API key is not configured")
        return await super().complete(request)

    def _build_model(self, request: CompletionRequest) -> ChatOpenAI:
        return ChatOpenAI(
            api_key=request.api_key or self._config.api_key,
            base_url=self._config.base_url,
            model=request.model,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            timeout=self._config.timeout_seconds,
            max_retries=0,
        )


class OllamaCompletionProvider(_RetryingChatProvider):
    """Completion provider for a local Ollama server."""

    def __init__(self, config: OllamaCompletionConfig) -> None:
        self._config = config
        self.retry_attempts = config.retry_attempts
        self.retry_backoff_seconds = config.retry_backoff_seconds

    def _build_model(self, request: CompletionRequest) -> ChatOllama:
        return ChatOllama(
            base_url=self._config.base_url,
            model=request.model,
            temperature=request.temperature,
            num_predict=request.max_tokens,
            client_kwargs={"timeout": self._config.timeout_seconds},
        )


def build_completion_provider(settings: AppSettings) -> CompletionProvider:
    if settings.provider == "ollama":
        return OllamaCompletionProvider(
            OllamaCompletionConfig(
                base_url=settings.ollama_base_url,
                timeout_seconds=settings.llm_request_timeout_seconds,
                retry_attempts=settings.llm_retry_attempts,
                retry_backoff_seconds=settings.llm_retry_backoff_seconds,
            )
        )

    return OpenAICompletionProvider(
        OpenAICompletionConfig(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout_seconds=settings.llm_request_timeout_seconds,
            retry_attempts=settings.llm_retry_attempts,
            retry_backoff_seconds=settings.llm_retry_backoff_seconds,
            provider_label="OpenRouter" if settings.provider == "openrouter" else "OpenAI",
        )
    )


async def list_openai_models(
    api_key: str,
    base_url: str = "https://api.openai.com/v1",
    timeout_seconds: int = 30,
) -> list[str]:
    url = f"{base_url.rstrip('/')}/models"
    headers = {"Authorization": f"Bearer {api_key}"}

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
            payload = response.json()
    except Exception as exc:  # noqa: BLE001
        raise OpenAIModelListError(f"Failed to list OpenAI models: {exc}") from exc

    raw_items = payload.get("data", [])
    model_ids = sorted(
        {
            item["id"]
            for item in raw_items
            if isinstance(item, dict) and isinstance(item.get("id"), str)
        }
    )

    filtered = [
        model_id
        for model_id in model_ids
        if model_id.startswith(("gpt", "o", "chatgpt"))
        and "embedding" not in model_id
        and "audio" not in model_id
        and "tts" not in model_id
        and "moderation" not in model_id
        and "whisper" not in model_id
    ]
    return filtered or model_ids
