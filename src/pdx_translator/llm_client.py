"""LLM API client utilities."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from openai import (
    AsyncOpenAI,
    APIConnectionError,
    APITimeoutError,
    RateLimitError,
    AuthenticationError,
    PermissionDeniedError,
    APIStatusError,
)

from .config import ClientSettings
from .errors import AuthError, RequestError, RequestErrorKind

logger = logging.getLogger(__name__)


class ChatClient(Protocol):
    """Anything that can answer a chat prompt within a timeout."""

    async def send(self, messages: List[Dict[str, Any]], timeout: float) -> str:
        ...


def classify_error(error: Exception) -> Exception:
    """
    Map an OpenAI SDK exception to our error taxonomy.

    Returns:
        AuthError for rejected credentials, RequestError for everything else
    """
    # APITimeoutError is a subclass of APIConnectionError
    if isinstance(error, APITimeoutError):
        return RequestError(RequestErrorKind.TIMEOUT, str(error))
    if isinstance(error, APIConnectionError):
        return RequestError(RequestErrorKind.TRANSPORT, str(error))
    if isinstance(error, (AuthenticationError, PermissionDeniedError)):
        return AuthError(str(error))
    if isinstance(error, RateLimitError):
        return RequestError(RequestErrorKind.RATE_LIMITED, str(error))
    if isinstance(error, APIStatusError):
        # 5xx is the server's problem; other 4xx means it did not like our request
        if error.status_code >= 500:
            return RequestError(RequestErrorKind.TRANSPORT, str(error))
        return RequestError(RequestErrorKind.MALFORMED, str(error))
    return RequestError(RequestErrorKind.TRANSPORT, f"{type(error).__name__}: {error}")


class OpenAIChatClient:
    """Single-attempt chat completion client. Retries belong to the orchestrator."""

    def __init__(self, client: AsyncOpenAI, settings: ClientSettings, json_mode: bool = True):
        self._client = client
        self._settings = settings
        self._json_mode = json_mode

    async def send(self, messages: List[Dict[str, Any]], timeout: float) -> str:
        params: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": self._settings.temperature,
            "timeout": timeout,
        }
        if self._settings.max_tokens is not None:
            params["max_tokens"] = self._settings.max_tokens
        if self._json_mode:
            params["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**params)
        except Exception as e:
            raise classify_error(e) from e

        if not response.choices:
            raise RequestError(RequestErrorKind.MALFORMED, "No choices in API response")

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"Tokens used: {usage.prompt_tokens} + {usage.completion_tokens} = {usage.total_tokens}"
            )

        content = response.choices[0].message.content
        return content.strip() if content else ""


def create_client(
    api_key: str,
    settings: Optional[ClientSettings] = None,
) -> OpenAIChatClient:
    """
    Create a chat client for an OpenAI-compatible API.

    Args:
        api_key: API key for authentication
        settings: Client settings, defaults when omitted

    Returns:
        Configured OpenAIChatClient
    """
    settings = settings or ClientSettings()
    client = AsyncOpenAI(
        api_key=api_key,
        base_url=settings.api_base,
        timeout=settings.timeout_secs,
        max_retries=0,
    )
    return OpenAIChatClient(client, settings)
