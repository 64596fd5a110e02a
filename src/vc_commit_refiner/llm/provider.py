"""
The narrow interface the engine uses to talk to an AI provider.

Every backend implements :class:`AiProvider`: ``send`` issues one
completion request and ``metadata`` describes the model's limits. The
backend is chosen once, at start-up, by :func:`create_provider`; nothing
downstream depends on a concrete backend.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from vc_commit_refiner.errors import ConfigError, ProviderPermanent, ProviderTransient


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


#: Context window assumed for models that do not report one.
DEFAULT_CONTEXT_TOKENS = 32768
#: Output reservation assumed when ``max_tokens`` is not configured.
DEFAULT_OUTPUT_TOKENS = 4096

_TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class ProviderMetadata:
    """Limits and identity of the configured model."""

    provider_name: str
    model: str
    max_context_tokens: int
    max_output_tokens: int


class AiProvider(abc.ABC):
    """A remote text-generation service.

    Implementations must be safe to share between worker threads: they
    hold configuration only and keep no per-call mutable state.
    """

    @abc.abstractmethod
    def send(self, system_prompt: str, user_prompt: str) -> str:
        """Send one request and return the generated text.

        Raises
        ------
        ProviderTransient
            Network errors, timeouts, rate limits and server errors.
        ProviderPermanent
            Authentication and request validation errors.
        MalformedResponse
            The reply could not be decoded.
        """

    @abc.abstractmethod
    def metadata(self) -> ProviderMetadata:
        """Return the model's limits."""


def _retry_after(response: requests.Response) -> Optional[float]:
    headers = getattr(response, "headers", None)
    value = headers.get("Retry-After") if headers else None
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def check_response(response: requests.Response, provider_name: str) -> None:
    """Translate a non-2xx HTTP response into the matching provider error."""
    status = response.status_code
    if 200 <= status < 300:
        return
    logger.error("%s returned non-2xx status %s: %s", provider_name, status, response.text)
    cause = f"{provider_name} returned status {status}: {response.text}"
    if status in _TRANSIENT_STATUS_CODES or status >= 500:
        raise ProviderTransient(cause, retry_after=_retry_after(response) if status == 429 else None)
    raise ProviderPermanent(cause)


def post_json(url: str, payload: Dict[str, Any], timeout: float, provider_name: str, headers=None) -> requests.Response:
    """POST ``payload`` and map connection failures to :class:`ProviderTransient`."""
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.Timeout as exc:
        logger.error("Request to %s timed out after %ss", provider_name, timeout)
        raise ProviderTransient(f"Request to {provider_name} timed out: {exc}") from exc
    except requests.RequestException as exc:
        logger.error("Failed to connect to %s: %s", provider_name, exc)
        raise ProviderTransient(f"Failed to connect to {provider_name}: {exc}") from exc
    check_response(response, provider_name)
    return response


def create_provider(config: Dict[str, Any]) -> AiProvider:
    """Build the provider selected by ``config['provider']``.

    Raises
    ------
    ConfigError
        If the provider name is unknown or required settings are missing.
    """
    # Imported here to keep the backends out of the interface module's imports.
    from vc_commit_refiner.llm.ollama_client import OllamaClient
    from vc_commit_refiner.llm.openai_client import OpenAIClient

    name = str(config.get("provider", "ollama")).lower()
    timeout = float(config.get("request_timeout", 60))
    if name == "ollama":
        return OllamaClient(
            base_url=config.get("base_url", "http://localhost"),
            port=int(config.get("port", 11434)),
            model=config["model"],
            request_timeout=timeout,
            max_tokens=config.get("max_tokens"),
            max_context_tokens=config.get("max_context_tokens"),
        )
    if name == "openai":
        return OpenAIClient(
            model=config["model"],
            api_key=config.get("api_key"),
            base_url=config.get("base_url", "https://api.openai.com/v1"),
            request_timeout=timeout,
            max_tokens=config.get("max_tokens"),
            max_context_tokens=config.get("max_context_tokens"),
        )
    raise ConfigError(f"Unknown provider '{name}'; expected 'ollama' or 'openai'")
