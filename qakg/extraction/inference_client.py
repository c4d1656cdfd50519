"""Chat-completion clients for the extraction endpoint.

Clients perform exactly one round-trip per call and never retry; the
orchestrator owns the retry budget. Every transport-level problem surfaces as
``TransportError``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger
from openai import APIError, APIStatusError, OpenAI

from qakg.exceptions import TransportError
from qakg.utils.config import LLMConfig
from qakg.utils.llm_client import create_openai_client


class InferenceClient(Protocol):
    """Minimal interface the orchestrator depends on."""

    def complete(self, system: str, user: str) -> str:
        ...

    def close(self) -> None:
        ...


def _chat_messages(system: str, user: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


class OllamaChatClient:
    """Client for Ollama's native ``/api/chat`` route (non-streaming)."""

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[httpx.Client] = None):
        self.config = config or LLMConfig()
        self.url = f"{self.config.base_url}/api/chat"
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(self.config.timeout, connect=self.config.connect_timeout)
        )

    def complete(self, system: str, user: str) -> str:
        """Send one chat request and return ``message.content``.

        Raises:
            TransportError: On connection failure, timeout, non-2xx status or
                an undecodable response body
        """
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "stream": False,
            "options": {"temperature": self.config.temperature},
            "messages": _chat_messages(system, user),
        }

        try:
            response = self._client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {self.url} failed: {exc}") from exc

        if not response.is_success:
            raise TransportError(
                f"Chat endpoint returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError("Chat endpoint returned a non-JSON body") from exc

        message = body.get("message") if isinstance(body, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else ""

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class OpenAIChatClient:
    """Client for OpenAI-compatible chat-completion endpoints."""

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[OpenAI] = None):
        self.config = config or LLMConfig()
        self._client = client or create_openai_client(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )

    def complete(self, system: str, user: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.config.model,
                temperature=self.config.temperature,
                messages=_chat_messages(system, user),
            )
        except APIStatusError as exc:
            raise TransportError(
                f"Chat endpoint returned {exc.status_code}", status_code=exc.status_code
            ) from exc
        except APIError as exc:
            raise TransportError(f"Chat request failed: {exc}") from exc

        if not response.choices:
            return ""
        content = response.choices[0].message.content
        return str(content or "")

    def close(self) -> None:
        self._client.close()


def create_inference_client(config: LLMConfig) -> InferenceClient:
    """Build the client for ``config.provider``."""
    logger.info(f"Using {config.provider} endpoint {config.base_url} with model {config.model}")
    if config.provider == "openai":
        return OpenAIChatClient(config)
    return OllamaChatClient(config)
