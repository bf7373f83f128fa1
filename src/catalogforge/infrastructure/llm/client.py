from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from catalogforge.core.errors import (
    CompletionServiceError,
    ConfigurationError,
    TransientServiceError,
)
from catalogforge.domain.models.chunk import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    system: str
    user: str
    response_schema: dict[str, Any] | None = None
    schema_name: str = "catalog_chunk"
    temperature: float = 0.0
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class CompletionResponse:
    content: str
    usage: TokenUsage | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class CompletionClient(Protocol):
    def complete(self, request: CompletionRequest) -> CompletionResponse: ...


def is_transient_status(status_code: int | None) -> bool:
    return status_code is not None and (status_code == 429 or 500 <= status_code <= 599)


def raise_for_status(message: str, status_code: int | None) -> None:
    if is_transient_status(status_code):
        raise TransientServiceError(message, status_code=status_code)
    raise CompletionServiceError(message, status_code=status_code)


class OpenAICompletionClient:
    """Chat-completions client with a JSON-schema response format."""

    def __init__(self, *, api_key: str | None = None, base_url: str | None = None, client: Any = None) -> None:
        if client is None:
            import openai

            try:
                client = openai.OpenAI(api_key=api_key, base_url=base_url, max_retries=0)
            except openai.OpenAIError as exc:
                raise ConfigurationError(f"OpenAI client could not be configured: {exc}") from exc
        self._client = client

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        import openai

        kwargs: dict[str, Any] = {
            "model": request.model,
            "temperature": request.temperature,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.user},
            ],
        }
        if request.response_schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": request.schema_name, "schema": request.response_schema},
            }
        else:
            kwargs["response_format"] = {"type": "json_object"}
        if request.timeout_seconds is not None:
            kwargs["timeout"] = request.timeout_seconds

        try:
            response = self._client.chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            raise_for_status(f"OpenAI request failed ({exc.status_code}): {exc.message}", exc.status_code)
        except openai.APIError as exc:
            raise CompletionServiceError(f"OpenAI request failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content if choice is not None else None) or ""
        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=int(response.usage.prompt_tokens or 0),
                completion_tokens=int(response.usage.completion_tokens or 0),
                total_tokens=int(response.usage.total_tokens or 0),
            )
        return CompletionResponse(content=content, usage=usage, raw={"id": getattr(response, "id", None)})


class OllamaCompletionClient:
    """Local ollama chat client; ``format`` carries the response schema."""

    def __init__(self, *, host: str | None = None, client: Any = None) -> None:
        if client is None:
            try:
                import ollama
            except ImportError as exc:
                raise ConfigurationError(
                    "The ollama provider needs the 'ollama' package: pip install 'catalogforge[ollama]'"
                ) from exc
            client = ollama.Client(host=host) if host else ollama.Client()
        self._client = client

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        import ollama

        try:
            response = self._client.chat(
                model=request.model,
                messages=[
                    {"role": "system", "content": request.system},
                    {"role": "user", "content": request.user},
                ],
                format=request.response_schema or "json",
                options={"temperature": request.temperature},
            )
        except ollama.ResponseError as exc:
            raise_for_status(f"Ollama request failed ({exc.status_code}): {exc.error}", exc.status_code)
        except ConnectionError as exc:
            raise CompletionServiceError(f"Ollama is unreachable: {exc}") from exc

        content = response["message"]["content"] or ""
        prompt_tokens = int(response.get("prompt_eval_count") or 0)
        completion_tokens = int(response.get("eval_count") or 0)
        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
        return CompletionResponse(content=content, usage=usage)


def build_completion_client(provider: str) -> CompletionClient | None:
    """Client for a configured provider name; ``none`` disables the service."""
    provider = (provider or "none").lower()
    if provider == "none":
        return None
    if provider == "openai":
        logger.debug("Using the OpenAI completion client")
        return OpenAICompletionClient()
    if provider == "ollama":
        logger.debug("Using the ollama completion client")
        return OllamaCompletionClient()
    raise ConfigurationError(f"Unknown LLM provider '{provider}'")
