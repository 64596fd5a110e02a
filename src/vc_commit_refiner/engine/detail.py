"""
Rendering commits at a detail level and reducing detail to fit a budget.

Rendering is pure: the same commit at the same level always yields the
same text. Each level renders a superset of the next lower level, which
keeps token estimates monotonic:

- ``FILE_LIST_ONLY``: commit header and the changed paths.
- ``STAT_ONLY``: header plus per-file status and line counts.
- ``TRUNCATED``: the stat rendering plus the start of the diff.
- ``FULL``: the stat rendering plus the entire diff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from vc_commit_refiner.engine.models import CommitUnit, DetailLevel, PlannedCommit
from vc_commit_refiner.engine.tokens import chars_for_tokens, estimate_tokens
from vc_commit_refiner.errors import PromptTooLarge


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


#: Diff cut used for ``TRUNCATED`` renders when no budget-derived cut is given.
DEFAULT_TRUNCATED_DIFF_CHARS = 8000

DIFF_TRUNCATION_MARKER = "\n[... diff truncated to fit the token budget ...]\n"


@dataclass(frozen=True)
class FittedCommit:
    """The most detailed level at which a commit fits a budget."""

    level: DetailLevel
    tokens: int
    max_diff_chars: Optional[int] = None


def truncate_diff(diff: str, max_chars: int) -> str:
    """Cut ``diff`` to at most ``max_chars`` characters, keeping its start.

    The cut falls on a line boundary when possible and is followed by a
    marker line. A diff that already fits is returned unchanged.
    """
    if len(diff) <= max_chars:
        return diff
    room = max_chars - len(DIFF_TRUNCATION_MARKER)
    if room <= 0:
        return ""
    head = diff[:room]
    newline = head.rfind("\n")
    if newline > 0:
        head = head[: newline + 1]
    return head.rstrip("\n") + DIFF_TRUNCATION_MARKER


def _render_header(commit: CommitUnit, level: DetailLevel) -> str:
    lines = [f"Commit: {commit.hash}"]
    if commit.author:
        lines.append(f"Author: {commit.author}")
    if commit.date:
        lines.append(f"Date: {commit.date}")
    lines.append("Original message:")
    message_lines = commit.message.rstrip().splitlines() or [""]
    lines.extend(f"    {line}" for line in message_lines)
    lines.append(f"Files changed ({len(commit.files)}):")
    for stat in commit.files:
        if level is DetailLevel.FILE_LIST_ONLY:
            lines.append(f"  {stat.path}")
        else:
            lines.append(f"  {stat.status} {stat.path} (+{stat.added} -{stat.removed})")
    return "\n".join(lines) + "\n"


def render_commit(
    commit: CommitUnit,
    level: DetailLevel,
    max_diff_chars: Optional[int] = None,
) -> str:
    """Render ``commit`` for a prompt at the given detail level.

    Parameters
    ----------
    commit : CommitUnit
        The commit to render.
    level : DetailLevel
        How much of the diff to include.
    max_diff_chars : int, optional
        Character budget for the diff at ``TRUNCATED`` level. Defaults to
        :data:`DEFAULT_TRUNCATED_DIFF_CHARS`. Ignored at other levels.

    Returns
    -------
    str
        The rendered commit text.
    """
    text = _render_header(commit, level)
    if level is DetailLevel.FULL:
        return text + "Diff:\n" + commit.diff()
    if level is DetailLevel.TRUNCATED:
        limit = DEFAULT_TRUNCATED_DIFF_CHARS if max_diff_chars is None else max_diff_chars
        return text + "Diff:\n" + truncate_diff(commit.diff(), limit)
    return text


def render_planned(planned: PlannedCommit) -> str:
    """Render a planned commit exactly as the planner estimated it."""
    return render_commit(planned.commit, planned.level, planned.max_diff_chars)


def estimate_commit(
    commit: CommitUnit,
    level: DetailLevel,
    max_diff_chars: Optional[int] = None,
) -> int:
    """Estimate the token cost of ``commit`` rendered at ``level``."""
    return estimate_tokens(render_commit(commit, level, max_diff_chars))


def truncation_budget(commit: CommitUnit, budget_tokens: int) -> int:
    """Characters of diff that fit at ``TRUNCATED`` level within ``budget_tokens``.

    The tokens left after the non-diff part of the render are converted
    back to characters with the estimation margin divided out, so the
    truncated render is guaranteed to estimate within the budget.
    """
    overhead = estimate_tokens(render_commit(commit, DetailLevel.TRUNCATED, max_diff_chars=0))
    return chars_for_tokens(budget_tokens - overhead)


def fit_commit(commit: CommitUnit, budget_tokens: int) -> FittedCommit:
    """Select the most detailed level at which ``commit`` fits ``budget_tokens``.

    Levels are tried from ``FULL`` downward and the first one whose
    estimate is within the budget wins. ``TRUNCATED`` is passed over when
    the budget leaves no room for any diff text.

    Raises
    ------
    PromptTooLarge
        If the commit does not fit even at ``FILE_LIST_ONLY``. The error
        carries the tokens required at that level.
    """
    level: Optional[DetailLevel] = DetailLevel.FULL
    tokens = 0
    while level is not None:
        max_diff_chars = None
        if level is DetailLevel.TRUNCATED:
            max_diff_chars = truncation_budget(commit, budget_tokens)
            if max_diff_chars <= len(DIFF_TRUNCATION_MARKER):
                # No room for any diff content; the stat render says as much.
                level = level.reduced()
                continue
        tokens = estimate_commit(commit, level, max_diff_chars)
        if tokens <= budget_tokens:
            if level is not DetailLevel.FULL:
                logger.debug(
                    "Reduced commit %s to %s detail (%d tokens, budget %d)",
                    commit.short_hash,
                    level.name,
                    tokens,
                    budget_tokens,
                )
            return FittedCommit(level=level, tokens=tokens, max_diff_chars=max_diff_chars)
        level = level.reduced()
    logger.debug(
        "Commit %s does not fit %d tokens even as a file list (%d tokens)",
        commit.short_hash,
        budget_tokens,
        tokens,
    )
    raise PromptTooLarge(
        required_tokens=tokens,
        available_tokens=budget_tokens,
        commit_hashes=[commit.hash],
    )
