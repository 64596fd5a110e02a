"""
Token budget derived from provider metadata and last-line prompt validation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction

from vc_commit_refiner.engine.tokens import estimate_tokens
from vc_commit_refiner.errors import PromptTooLarge


@dataclass(frozen=True)
class TokenBudget:
    """Input token budget for one run.

    Parameters
    ----------
    max_context_tokens : int
        Total context window of the model (input plus output).
    reserved_output_tokens : int
        Tokens reserved for the model's response.
    safety_margin_ratio : float, optional
        Extra headroom; the usable input is divided by ``1 + ratio``.
    model : str, optional
        Model identifier, used in error messages.
    """

    max_context_tokens: int
    reserved_output_tokens: int
    safety_margin_ratio: float = 0.0
    model: str = ""

    @classmethod
    def from_metadata(cls, metadata, safety_margin_ratio: float = 0.0) -> "TokenBudget":
        """Build a budget from :class:`~vc_commit_refiner.llm.provider.ProviderMetadata`."""
        return cls(
            max_context_tokens=metadata.max_context_tokens,
            reserved_output_tokens=metadata.max_output_tokens,
            safety_margin_ratio=safety_margin_ratio,
            model=metadata.model,
        )

    @property
    def available_input_tokens(self) -> int:
        usable = self.max_context_tokens - self.reserved_output_tokens
        if usable <= 0:
            return 0
        # Fraction keeps e.g. 2200 / 1.1 at exactly 2000.
        divisor = 1 + Fraction(str(self.safety_margin_ratio))
        return math.floor(Fraction(usable) / divisor)


@dataclass(frozen=True)
class TokenEstimate:
    """Estimated size of a validated prompt."""

    estimated_tokens: int
    available_tokens: int

    @property
    def utilization_pct(self) -> float:
        if self.available_tokens <= 0:
            return math.inf
        return self.estimated_tokens / self.available_tokens * 100.0


def validate_prompt(system_prompt: str, user_prompt: str, budget: TokenBudget) -> TokenEstimate:
    """Check that a rendered prompt fits the budget.

    This is the last check before every provider call and catches drift
    between planning estimates and the prompt actually assembled.

    Raises
    ------
    PromptTooLarge
        If ``estimate(system) + estimate(user)`` exceeds the available
        input tokens.
    """
    estimated = estimate_tokens(system_prompt) + estimate_tokens(user_prompt)
    available = budget.available_input_tokens
    if estimated > available:
        raise PromptTooLarge(
            required_tokens=estimated,
            available_tokens=available,
            model=budget.model or None,
        )
    return TokenEstimate(estimated_tokens=estimated, available_tokens=available)
