"""
Provider backend for OpenAI-compatible chat completion APIs.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from vc_commit_refiner.errors import MalformedResponse, ProviderPermanent
from vc_commit_refiner.llm.provider import (
    DEFAULT_CONTEXT_TOKENS,
    DEFAULT_OUTPUT_TOKENS,
    AiProvider,
    ProviderMetadata,
    post_json,
)


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


@dataclass
class OpenAIClient(AiProvider):
    """Client for ``/chat/completions`` endpoints.

    The API key falls back to the ``OPENAI_API_KEY`` environment variable.
    A missing key is reported when the first request is sent, as a
    permanent failure.
    """

    model: str
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    request_timeout: float = 60.0
    max_tokens: Optional[int] = None
    max_context_tokens: Optional[int] = None

    def _endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def _key(self) -> str:
        key = self.api_key or os.environ.get("OPENAI_API_KEY", "")
        if not key:
            raise ProviderPermanent("No API key configured. Set 'api_key' or OPENAI_API_KEY.")
        return key

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            provider_name="OpenAI",
            model=self.model,
            max_context_tokens=self.max_context_tokens or DEFAULT_CONTEXT_TOKENS,
            max_output_tokens=self.max_tokens or DEFAULT_OUTPUT_TOKENS,
        )

    def send(self, system_prompt: str, user_prompt: str) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        payload: Dict[str, Any] = {"model": self.model, "messages": messages, "stream": False}
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._key()}",
        }
        logger.debug("Sending request to %s with model %s", self._endpoint(), self.model)
        response = post_json(self._endpoint(), payload, self.request_timeout, "OpenAI", headers=headers)
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise MalformedResponse("Failed to parse OpenAI response", getattr(response, "text", "")) from exc
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse("No choices in response", json.dumps(data)) from exc
        if content is None:
            raise MalformedResponse("Empty message content in response", json.dumps(data))
        return str(content).strip()
