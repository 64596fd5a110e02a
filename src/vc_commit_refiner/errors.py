"""
Error taxonomy for vc_commit_refiner.

Every failure that can happen while processing a unit of commits is a
subclass of :class:`RefinerError`. The classes differ in whether they are
worth retrying:

- :class:`PromptTooLarge` - the prompt does not fit the provider's input
  budget. Permanent.
- :class:`ProviderTransient` - network error, timeout, rate limit or a
  server-side error. Retried by the retry controller.
- :class:`ProviderPermanent` - authentication or request validation
  errors. Permanent.
- :class:`MalformedResponse` - the provider answered but the text could
  not be interpreted. Permanent; the raw text is kept for diagnostics.

Collaborator errors (:class:`ConfigError`, :class:`GitError`) are raised
before a run starts and are never recorded as unit failures.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


class RefinerError(Exception):
    """Base class for failures scoped to a single unit of work."""

    kind = "error"
    transient = False

    def __init__(self, message: str, commit_hashes: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.commit_hashes: Tuple[str, ...] = tuple(commit_hashes)
        self.attempts = 1

    def for_commits(self, commit_hashes: Sequence[str]) -> "RefinerError":
        """Attach the identity of the affected commits and return ``self``."""
        if not self.commit_hashes:
            self.commit_hashes = tuple(commit_hashes)
        return self


class PromptTooLarge(RefinerError):
    """Raised when a prompt exceeds the available input tokens."""

    kind = "prompt_too_large"

    def __init__(
        self,
        required_tokens: int,
        available_tokens: int,
        commit_hashes: Sequence[str] = (),
        model: Optional[str] = None,
    ) -> None:
        target = f" for model '{model}'" if model else ""
        super().__init__(
            f"Prompt too large{target}: estimated {required_tokens} tokens, "
            f"but only {available_tokens} input tokens available",
            commit_hashes,
        )
        self.required_tokens = required_tokens
        self.available_tokens = available_tokens
        self.model = model

    @property
    def shortfall(self) -> int:
        """Number of tokens by which the prompt exceeds the budget."""
        return max(0, self.required_tokens - self.available_tokens)


class ProviderTransient(RefinerError):
    """Raised for provider failures that may succeed when retried."""

    kind = "provider_transient"
    transient = True

    def __init__(
        self,
        cause: str,
        retry_after: Optional[float] = None,
        commit_hashes: Sequence[str] = (),
    ) -> None:
        message = cause
        if retry_after is not None:
            message = f"{cause} (retry after {retry_after}s)"
        super().__init__(message, commit_hashes)
        self.cause = cause
        self.retry_after = retry_after


class ProviderPermanent(RefinerError):
    """Raised for provider failures that will not go away on retry."""

    kind = "provider_permanent"

    def __init__(self, cause: str, commit_hashes: Sequence[str] = ()) -> None:
        super().__init__(cause, commit_hashes)
        self.cause = cause


class MalformedResponse(RefinerError):
    """Raised when the provider's reply cannot be interpreted."""

    kind = "malformed_response"

    def __init__(self, reason: str, raw_text: str = "", commit_hashes: Sequence[str] = ()) -> None:
        super().__init__(f"Malformed provider response: {reason}", commit_hashes)
        self.reason = reason
        self.raw_text = raw_text


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""

    pass


class GitError(Exception):
    """Raised when a Git command fails."""

    pass
