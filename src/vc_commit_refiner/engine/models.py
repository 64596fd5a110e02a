"""
Data model shared by the planning, execution and refinement engine.

Commits enter the engine as :class:`CommitUnit` objects produced by a
commit source. The planner wraps them in :class:`PlannedCommit` entries,
freezes them into :class:`Unit` objects and the executor produces one
:class:`UnitResult` per unit. A :class:`RunReport` is the terminal
artifact handed to the presentation layer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Tuple

from vc_commit_refiner.errors import PromptTooLarge, RefinerError


class DetailLevel(enum.Enum):
    """How much of a commit's diff is rendered into a prompt.

    Levels are ordered from the most to the least detailed; for the same
    commit each level renders strictly less text than the previous one.
    """

    FULL = 0
    TRUNCATED = 1
    STAT_ONLY = 2
    FILE_LIST_ONLY = 3

    def reduced(self) -> Optional["DetailLevel"]:
        """Return the next less detailed level, or ``None`` after the last."""
        members = list(DetailLevel)
        position = members.index(self)
        if position + 1 < len(members):
            return members[position + 1]
        return None


@dataclass(frozen=True)
class FileStat:
    """Per-file change counts of a commit."""

    path: str
    added: int = 0
    removed: int = 0
    status: str = "M"  # A added, M modified, D deleted, R renamed


def _no_diff() -> str:
    return ""


@dataclass(frozen=True)
class CommitUnit:
    """One commit as seen by the engine.

    Attributes
    ----------
    hash : str
        Full commit hash.
    message : str
        The original commit message.
    files : Tuple[FileStat, ...]
        Summary of changed files.
    diff_loader : Callable[[], str]
        Zero-argument callable returning the unified diff. It is called
        lazily, so a commit source may read diffs on demand.
    author : str
        Author name and e-mail, if known.
    date : str
        Author date in ISO format, if known.
    """

    hash: str
    message: str
    files: Tuple[FileStat, ...] = ()
    diff_loader: Callable[[], str] = field(default=_no_diff, repr=False, compare=False)
    author: str = ""
    date: str = ""

    def diff(self) -> str:
        return self.diff_loader() or ""

    @property
    def short_hash(self) -> str:
        return self.hash[:7]

    @property
    def subject(self) -> str:
        lines = self.message.strip().splitlines()
        return lines[0] if lines else ""


@dataclass(frozen=True)
class PlannedCommit:
    """A commit placed in a unit at a resolved detail level.

    ``max_diff_chars`` is only meaningful for :attr:`DetailLevel.TRUNCATED`
    and records the cut the planner sized the estimate with, so the prompt
    renders exactly what was estimated.
    """

    commit: CommitUnit
    position: int
    level: DetailLevel
    estimated_tokens: int
    max_diff_chars: Optional[int] = None


@dataclass(frozen=True)
class Unit:
    """The unit of scheduling: one provider call for one or more commits.

    A unit whose ``failure`` is set was isolated by the planner because its
    commit could not fit the budget even at the smallest detail level; the
    executor records it as failed without calling the provider.
    """

    index: int
    commits: Tuple[PlannedCommit, ...]
    estimated_tokens: int
    failure: Optional[PromptTooLarge] = None

    @property
    def commit_hashes(self) -> Tuple[str, ...]:
        return tuple(planned.commit.hash for planned in self.commits)

    @property
    def first_position(self) -> int:
        return min(planned.position for planned in self.commits)

    @property
    def levels(self) -> Tuple[DetailLevel, ...]:
        return tuple(planned.level for planned in self.commits)

    def __len__(self) -> int:
        return len(self.commits)


@dataclass(frozen=True)
class UnitResult:
    """Outcome of processing one unit: a payload on success, an error otherwise."""

    unit: Unit
    payload: Any = None
    error: Optional[RefinerError] = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def with_payload(self, payload: Any) -> "UnitResult":
        return UnitResult(unit=self.unit, payload=payload, error=None, attempts=self.attempts)

    def describe_failure(self) -> str:
        """Return a one-line, operator-facing description of the failure."""
        if self.error is None:
            return ""
        commits = ", ".join(commit_hash[:7] for commit_hash in self.unit.commit_hashes)
        text = f"[{self.error.kind}] {commits}: {self.error.message}"
        if isinstance(self.error, PromptTooLarge):
            text += f" (short by {self.error.shortfall} tokens)"
        return text


@dataclass(frozen=True)
class RunReport:
    """Ordered collection of unit results for one run."""

    results: Tuple[UnitResult, ...] = ()
    coherence_applied: bool = False

    @classmethod
    def from_results(cls, results: List[UnitResult], coherence_applied: bool = False) -> "RunReport":
        ordered = sorted(results, key=lambda result: result.unit.first_position)
        return cls(results=tuple(ordered), coherence_applied=coherence_applied)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    def successes(self) -> List[UnitResult]:
        return [result for result in self.results if result.succeeded]

    def failures(self) -> List[UnitResult]:
        return [result for result in self.results if not result.succeeded]

    def result_for(self, commit_hash: str) -> Optional[UnitResult]:
        for result in self.results:
            if commit_hash in result.unit.commit_hashes:
                return result
        return None

    def commits(self) -> List[CommitUnit]:
        """Return every commit of the run in input order."""
        planned = [p for result in self.results for p in result.unit.commits]
        planned.sort(key=lambda p: p.position)
        return [p.commit for p in planned]

    def __iter__(self) -> Iterator[UnitResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)
