"""
AI provider integration for vc_commit_refiner.

This package contains the :class:`AiProvider` interface with its Ollama
and OpenAI-compatible backends, the prompt templates, and the tasks that
turn a unit of commits into prompts and parse the provider's replies.
"""

from .provider import AiProvider, ProviderMetadata, create_provider  # noqa: F401
from .tasks import AmendTask, CheckTask, create_task  # noqa: F401
