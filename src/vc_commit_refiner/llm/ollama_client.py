"""
Provider backend for an Ollama server.

This client wraps HTTP requests to the Ollama REST API and sends the
system and user prompts to the ``/api/chat`` endpoint. Connection
errors, timeouts, rate limits and server errors are raised as
:class:`ProviderTransient`; other HTTP errors as
:class:`ProviderPermanent`; undecodable replies as
:class:`MalformedResponse`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from vc_commit_refiner.errors import MalformedResponse
from vc_commit_refiner.llm.provider import (
    DEFAULT_CONTEXT_TOKENS,
    DEFAULT_OUTPUT_TOKENS,
    AiProvider,
    ProviderMetadata,
    post_json,
)


logger = logging.getLogger(__name__)
# Attach a null handler to avoid errors when the root logger is missing a
# stream. Messages will still propagate to the root logger if configured.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


def strip_thinking_tags(text: str) -> str:
    """Remove reasoning sections from a model reply.

    Reasoning models wrap their thinking in tags such as ``<think>``,
    ``<thinking>``, ``<thought>`` or ``<reasoning>``. The tags and their
    contents are dropped, leaving only the answer.

    Examples
    --------
    >>> strip_thinking_tags("<think>reasoning...</think>Answer")
    'Answer'
    >>> strip_thinking_tags("<thinking>thoughts</thinking>\\n\\nReal answer")
    'Real answer'
    """
    result = text
    for tag in ("think", "thinking", "thought", "reasoning"):
        result = re.sub(rf"<{tag}>.*?</{tag}>", "", result, flags=re.DOTALL | re.IGNORECASE)
    return result.strip()


@dataclass
class OllamaClient(AiProvider):
    """Client for an Ollama server.

    Parameters
    ----------
    base_url : str
        Base URL of the Ollama server, e.g. ``"http://localhost"``.
    port : int
        Port number of the Ollama server, e.g. ``11434``.
    model : str
        Name of the model to use for generation, e.g. ``"llama3"``.
    request_timeout : float, optional
        Timeout in seconds for HTTP requests. Defaults to 60 seconds.
    max_tokens : int, optional
        Maximum number of tokens to generate. Passed as ``num_predict``
        and reserved from the context window.
    max_context_tokens : int, optional
        Context window of the model. Passed as ``num_ctx``; defaults to
        32768 tokens.
    """

    base_url: str
    port: int
    model: str
    request_timeout: float = 60.0
    max_tokens: Optional[int] = None
    max_context_tokens: Optional[int] = None

    def _endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}:{self.port}/api/chat"

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            provider_name="Ollama",
            model=self.model,
            max_context_tokens=self.max_context_tokens or DEFAULT_CONTEXT_TOKENS,
            max_output_tokens=self.max_tokens or DEFAULT_OUTPUT_TOKENS,
        )

    def send(self, system_prompt: str, user_prompt: str) -> str:
        """Send the prompts to the chat endpoint and return the reply text."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
        }
        options: Dict[str, Any] = {}
        if self.max_tokens is not None:
            options["num_predict"] = self.max_tokens
        if self.max_context_tokens is not None:
            options["num_ctx"] = self.max_context_tokens
        if options:
            payload["options"] = options
        url = self._endpoint()
        logger.debug(
            "Sending request to Ollama at %s (system %d chars, user %d chars)",
            url,
            len(system_prompt),
            len(user_prompt),
        )
        response = post_json(url, payload, self.request_timeout, "Ollama")
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("Failed to parse Ollama response: %s", exc)
            raise MalformedResponse("Failed to parse Ollama response", getattr(response, "text", "")) from exc
        # /api/chat answers with a 'message' object; /api/generate style
        # servers answer with a top-level 'response' string.
        if isinstance(data, dict) and isinstance(data.get("message"), dict):
            return strip_thinking_tags(str(data["message"].get("content", "")))
        if isinstance(data, dict) and "response" in data:
            return strip_thinking_tags(str(data.get("response", "")))
        raise MalformedResponse("Unexpected response structure from Ollama", json.dumps(data))
