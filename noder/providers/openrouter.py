"""
OpenRouter chat-completion client.

A single POST per attempt; the whole completion arrives in the response
body. Transient failures go through ``with_retry`` (2 attempts by default).

API Reference: https://openrouter.ai/docs/api-reference/chat-completion
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import BaseModel, Field

from noder.providers.errors import (
    AuthenticationError,
    NodeValidationError,
    ProviderHTTPError,
    ProviderRequestError,
)
from noder.providers.retry import with_retry

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
APP_TITLE = "noder"

DEFAULT_TIMEOUT = 60.0
MAX_RETRIES = 2
RETRY_DELAY = 1.0


class ChatMessage(BaseModel):
    role: str = "assistant"
    content: str | list[Any] | None = None
    tool_calls: list[dict[str, Any]] | None = None

    model_config = {"extra": "allow"}


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage | None = None
    finish_reason: str | None = None

    model_config = {"extra": "allow"}


class ChatCompletion(BaseModel):
    """Chat-completion response body."""

    id: str | None = None
    model: str | None = None
    choices: list[ChatChoice] = Field(default_factory=list)
    usage: dict[str, Any] | None = None

    model_config = {"extra": "allow"}

    def first_content(self) -> str:
        """Content of the first choice, or an empty string."""
        if not self.choices or self.choices[0].message is None:
            return ""
        content = self.choices[0].message.content
        if content is None:
            return ""
        if isinstance(content, list):
            # Content-part arrays: keep the text parts
            return "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        return content


def parse_error_message(response: httpx.Response, data: Any) -> str:
    """``OpenRouter error: <message> (<details>)`` from an error body."""
    error = data.get("error") if isinstance(data, dict) else None
    error = error if isinstance(error, dict) else {}
    message = error.get("message") or response.reason_phrase or "Bad Request"
    details = error.get("details")
    suffix = f" ({details})" if details else ""
    return f"OpenRouter error: {message}{suffix}"


class OpenRouterClient:
    """Async client for the OpenRouter chat-completion API."""

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            api_key: OpenRouter API key
            base_url: API root, without trailing slash
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per call, including the first
            retry_delay: Base delay of the linear backoff, in seconds
            http_client: Shared client (tests pass one with a MockTransport)
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._http_client = http_client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Title": APP_TITLE,
        }

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Decode the body; raise ProviderHTTPError on non-2xx."""
        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"raw": response.text}

        if not response.is_success:
            raise ProviderHTTPError(
                parse_error_message(response, data), status_code=response.status_code, data=data
            )
        return data

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method,
                    url,
                    headers=self._headers,
                    json=json,
                    params=params,
                    timeout=timeout or self._timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=timeout or self._timeout) as client:
                    response = await client.request(
                        method, url, headers=self._headers, json=json, params=params
                    )
        except httpx.TimeoutException as e:
            raise ProviderRequestError(f"OpenRouter request timed out: {e}") from e
        except httpx.RequestError as e:
            raise ProviderRequestError(f"OpenRouter network error: {e}") from e
        return self._handle_response(response)

    async def chat_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] = "auto",
        timeout: float | None = None,
    ) -> ChatCompletion:
        """
        Request a chat completion.

        Args:
            model: Model id, e.g. ``openai/gpt-4o``
            messages: OpenAI-style message list
            tools: Optional tool definitions
            tool_choice: Sent only together with ``tools``
            timeout: Overrides the client timeout for this call

        Raises:
            AuthenticationError: No API key configured
            NodeValidationError: Empty model id or message list
            ProviderHTTPError / ProviderRequestError: after retries
        """
        if not self._api_key:
            raise AuthenticationError("OpenRouter API key is not configured")
        if not model:
            raise NodeValidationError("Model is required")
        if not messages:
            raise NodeValidationError("Messages are required")

        body: dict[str, Any] = {"model": model, "messages": messages}
        if tools:
            body["tools"] = tools
            body["tool_choice"] = tool_choice

        start = time.monotonic()
        data = await with_retry(
            lambda: self._request("POST", "/chat/completions", json=body, timeout=timeout),
            max_attempts=self._max_attempts,
            base_delay=self._retry_delay,
            operation_name="openrouter.chat_completion",
            metadata={"model": model, "message_count": len(messages)},
        )
        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Chat completion from {model} in {latency_ms}ms",
            extra={"provider": "openrouter", "model": model, "latency_ms": latency_ms},
        )
        return ChatCompletion.model_validate(data)

    async def list_models(self, output_modality: str | None = None) -> list[dict[str, Any]]:
        """List available models, optionally filtered by output modality."""
        if not self._api_key:
            raise AuthenticationError("OpenRouter API key is not configured")

        data = await with_retry(
            lambda: self._request("GET", "/models"),
            max_attempts=self._max_attempts,
            base_delay=self._retry_delay,
            operation_name="openrouter.list_models",
        )
        models = data.get("data") or []
        if output_modality:
            models = [
                model
                for model in models
                if output_modality in (model.get("architecture") or {}).get("output_modalities", [])
                or output_modality in ((model.get("architecture") or {}).get("modality") or "")
            ]
        return models
