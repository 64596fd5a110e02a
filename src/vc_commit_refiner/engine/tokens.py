"""
Token estimation heuristics.

Provider tokenizers are not available locally, so token counts are
approximated from character counts: one token per 3.5 characters,
inflated by a 10% safety margin. Overestimating is safer than
underestimating, and the estimate must be deterministic because the
planner relies on repeated estimates of the same text agreeing.
"""

from __future__ import annotations

#: Approximate characters per token for mixed English text and code.
CHARS_PER_TOKEN = 3.5

#: Multiplier covering tokenizer variance (special tokens, non-ASCII text).
SAFETY_MARGIN = 1.10

# ceil(n / 3.5 * 1.10) == ceil(11 * n / 35), evaluated on integers so the
# result never depends on float rounding.
_NUMERATOR = 11
_DENOMINATOR = 35


def estimate_tokens_from_char_count(char_count: int) -> int:
    """Estimate the token count of a text of ``char_count`` characters."""
    if char_count <= 0:
        return 0
    return -(-char_count * _NUMERATOR // _DENOMINATOR)


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens a provider will count for ``text``.

    Examples
    --------
    >>> estimate_tokens("")
    0
    >>> estimate_tokens("hello")
    2
    >>> estimate_tokens("x" * 3500)
    1100
    """
    return estimate_tokens_from_char_count(len(text))


def chars_for_tokens(tokens: int) -> int:
    """Return the largest character count whose estimate fits in ``tokens``."""
    if tokens <= 0:
        return 0
    return tokens * _DENOMINATOR // _NUMERATOR
