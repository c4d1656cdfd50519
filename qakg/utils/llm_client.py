"""OpenAI-compatible client creation factory.

Used for endpoints that speak the OpenAI chat-completions protocol (hosted
OpenAI, vLLM, or Ollama's ``/v1`` compatibility route). Two things differ
from a plain hosted-OpenAI factory: a missing key falls back to a placeholder
so keyless local servers work, and SDK retries default to zero because the
extraction orchestrator owns the retry budget and its backoff.
"""

import os
from typing import Any, Optional

from loguru import logger
from openai import OpenAI

# Ollama and most self-hosted servers ignore the key but the SDK requires one.
PLACEHOLDER_API_KEY = "not-needed"


def create_openai_client(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    max_retries: int = 0,
    **kwargs: Any,
) -> OpenAI:
    """Create and configure an OpenAI client.

    Args:
        api_key: The API key. Falls back to ``OPENAI_API_KEY``, then a placeholder.
        base_url: The base URL. Falls back to ``OPENAI_BASE_URL``.
        timeout: Request timeout in seconds.
        max_retries: SDK-level retries.
        **kwargs: Additional arguments to pass to the OpenAI constructor.

    Returns:
        Configured OpenAI client.
    """
    final_api_key = api_key or os.getenv("OPENAI_API_KEY") or PLACEHOLDER_API_KEY
    final_base_url = base_url or os.getenv("OPENAI_BASE_URL")

    masked_key = (
        f"{final_api_key[:4]}...{final_api_key[-4:]}" if len(final_api_key) > 8 else "****"
    )
    logger.debug(
        f"Creating OpenAI client: base_url={final_base_url}, "
        f"api_key={masked_key}, timeout={timeout}"
    )

    return OpenAI(
        api_key=final_api_key,
        base_url=final_base_url,
        timeout=timeout,
        max_retries=max_retries,
        **kwargs,
    )
