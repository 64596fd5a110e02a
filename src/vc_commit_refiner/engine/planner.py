"""
Planning commits into units that fit the provider's token budget.

Two strategies share the same estimation and detail-reduction code:

- :class:`PerCommitStrategy` (the default, :attr:`PlanMode.CONCURRENT`)
  turns every commit into its own unit.
- :class:`BinPackingStrategy` (legacy, :attr:`PlanMode.BATCH`) packs
  several commits per unit with a first-fit-decreasing heuristic.

Either way a commit that cannot fit the budget even as a bare file list
becomes an isolated, failed unit instead of corrupting a shared bin.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from vc_commit_refiner.engine.budget import TokenBudget
from vc_commit_refiner.engine.detail import FittedCommit, estimate_commit, fit_commit
from vc_commit_refiner.engine.models import CommitUnit, DetailLevel, PlannedCommit, Unit
from vc_commit_refiner.errors import PromptTooLarge


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


#: Tokens held back for prompt envelope variance not captured by the
#: caller's overhead estimate.
PROMPT_ENVELOPE_OVERHEAD_TOKENS = 150


class PlanMode(enum.Enum):
    CONCURRENT = "concurrent"
    BATCH = "batch"


# A planned group: the commits of one unit, or a single commit isolated
# with the size error that prevented it from being planned.
_Group = Tuple[List[PlannedCommit], Optional[PromptTooLarge]]


@dataclass
class Bin:
    """A group of commits being assembled into one batch.

    Every commit after the first also costs ``separator_tokens``, the
    estimate of the text joining two rendered commits in a prompt.
    """

    entries: List[PlannedCommit] = field(default_factory=list)
    estimated_tokens: int = 0
    separator_tokens: int = 0

    def cost_of(self, planned: PlannedCommit) -> int:
        return planned.estimated_tokens + (self.separator_tokens if self.entries else 0)

    def accepts(self, planned: PlannedCommit, capacity: int, max_size: Optional[int]) -> bool:
        if max_size is not None and len(self.entries) >= max_size:
            return False
        return self.estimated_tokens + self.cost_of(planned) <= capacity

    def add(self, planned: PlannedCommit) -> None:
        self.estimated_tokens += self.cost_of(planned)
        self.entries.append(planned)


def capacity_for(budget: TokenBudget, overhead_tokens: int = 0) -> int:
    """Tokens available to commit content once prompt overhead is removed."""
    return max(0, budget.available_input_tokens - overhead_tokens - PROMPT_ENVELOPE_OVERHEAD_TOKENS)


def _planned(position: int, commit: CommitUnit, fitted: FittedCommit) -> PlannedCommit:
    return PlannedCommit(
        commit=commit,
        position=position,
        level=fitted.level,
        estimated_tokens=fitted.tokens,
        max_diff_chars=fitted.max_diff_chars,
    )


def _isolated(position: int, commit: CommitUnit, exc: PromptTooLarge) -> _Group:
    logger.warning("Commit %s cannot fit the token budget: %s", commit.short_hash, exc)
    planned = PlannedCommit(
        commit=commit,
        position=position,
        level=DetailLevel.FILE_LIST_ONLY,
        estimated_tokens=exc.required_tokens,
    )
    return [planned], exc


class PerCommitStrategy:
    """One unit per commit, each fitted against the full capacity."""

    def pack(self, commits: Sequence[CommitUnit], capacity: int) -> List[_Group]:
        groups: List[_Group] = []
        for position, commit in enumerate(commits):
            try:
                fitted = fit_commit(commit, capacity)
            except PromptTooLarge as exc:
                groups.append(_isolated(position, commit, exc))
                continue
            groups.append(([_planned(position, commit, fitted)], None))
        return groups


class BinPackingStrategy:
    """First-fit-decreasing packing of several commits per unit.

    Parameters
    ----------
    max_batch_size : int, optional
        Upper bound on commits per bin, used by the legacy fixed batch
        size setting. ``None`` packs by token budget alone.
    separator_tokens : int, optional
        Cost charged for every commit after the first in a bin.
    """

    def __init__(self, max_batch_size: Optional[int] = None, separator_tokens: int = 0) -> None:
        if max_batch_size is not None and max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self.max_batch_size = max_batch_size
        self.separator_tokens = separator_tokens

    def pack(self, commits: Sequence[CommitUnit], capacity: int) -> List[_Group]:
        sized = [
            (position, commit, estimate_commit(commit, DetailLevel.FULL))
            for position, commit in enumerate(commits)
        ]
        # Largest first; sort is stable so equal sizes keep input order.
        sized.sort(key=lambda item: item[2], reverse=True)

        bins: List[Bin] = []
        groups: List[_Group] = []
        for position, commit, full_tokens in sized:
            if full_tokens <= capacity:
                fitted = FittedCommit(level=DetailLevel.FULL, tokens=full_tokens)
            else:
                try:
                    fitted = fit_commit(commit, capacity)
                except PromptTooLarge as exc:
                    groups.append(_isolated(position, commit, exc))
                    continue
            planned = _planned(position, commit, fitted)
            for candidate in bins:
                if candidate.accepts(planned, capacity, self.max_batch_size):
                    candidate.add(planned)
                    break
            else:
                new_bin = Bin(separator_tokens=self.separator_tokens)
                new_bin.add(planned)
                bins.append(new_bin)

        for packed in bins:
            groups.append((sorted(packed.entries, key=lambda p: p.position), None))
        return groups


def strategy_for(mode: PlanMode, max_batch_size: Optional[int] = None, separator_tokens: int = 0):
    if mode is PlanMode.BATCH:
        return BinPackingStrategy(max_batch_size, separator_tokens)
    return PerCommitStrategy()


def plan(
    commits: Sequence[CommitUnit],
    budget: TokenBudget,
    mode: PlanMode = PlanMode.CONCURRENT,
    overhead_tokens: int = 0,
    max_batch_size: Optional[int] = None,
    separator_tokens: int = 0,
) -> List[Unit]:
    """Group ``commits`` into units that fit ``budget``.

    Parameters
    ----------
    commits : Sequence[CommitUnit]
        Commits in input order.
    budget : TokenBudget
        The provider's input budget.
    mode : PlanMode, optional
        ``CONCURRENT`` (one commit per unit) or ``BATCH`` (bin packing).
    overhead_tokens : int, optional
        Estimated tokens of the system prompt and empty user prompt.
    max_batch_size : int, optional
        Cap on commits per unit in batch mode.
    separator_tokens : int, optional
        Estimated tokens of the text placed between two commits of a unit.

    Returns
    -------
    List[Unit]
        Units ordered by the input position of their first commit. Every
        commit appears in exactly one unit.
    """
    if not commits:
        return []
    capacity = capacity_for(budget, overhead_tokens)
    groups = strategy_for(mode, max_batch_size, separator_tokens).pack(commits, capacity)
    groups.sort(key=lambda group: min(p.position for p in group[0]))

    units = [
        Unit(
            index=index,
            commits=tuple(entries),
            estimated_tokens=sum(p.estimated_tokens for p in entries) + separator_tokens * (len(entries) - 1),
            failure=failure,
        )
        for index, (entries, failure) in enumerate(groups)
    ]
    logger.debug(
        "Planned %d commit(s) into %d unit(s) (mode=%s, capacity=%d tokens)",
        len(commits),
        len(units),
        mode.value,
        capacity,
    )
    return units
