"""
Git client implementation for vc_commit_refiner.

This module reads the commit history the engine works on: the commits
of a revision range with their messages and per-file statistics, and
their diffs on demand. All subprocess calls go through
:meth:`GitClient._run` so that unit tests can mock them easily.
"""

from __future__ import annotations

import functools
import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from vc_commit_refiner.engine.models import CommitUnit, FileStat
from vc_commit_refiner.errors import GitError


logger = logging.getLogger(__name__)
# Attach a null handler to avoid logging errors when the root logger is not
# configured. Logs will propagate to the root when configured by the CLI.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = _FIELD_SEP.join(["%H", "%an <%ae>", "%aI", "%B"]) + _RECORD_SEP

DEFAULT_RANGE = "HEAD~5..HEAD"


class GitClient:
    """Client for reading commits from a Git repository."""

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root
        self._diff_cache: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Static helpers
    # ------------------------------------------------------------------
    @staticmethod
    def find_repo_root(start: Path) -> Optional[Path]:
        """Find the root of the Git repository starting from ``start``.

        Walk upwards until a ``.git`` entry is found or the filesystem
        root is reached.
        """
        current = start.resolve()
        while True:
            if (current / ".git").exists():
                return current
            if current.parent == current:
                return None
            current = current.parent

    # ------------------------------------------------------------------
    # Basic Git commands
    # ------------------------------------------------------------------
    def _run(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run a Git command in the repository root.

        Raises
        ------
        GitError
            If the command cannot be started, or exits with a non-zero
            status when ``check`` is True.
        """
        full_cmd = ["git"] + args
        logger.debug("Executing Git command: %s", " ".join(full_cmd))
        try:
            result = subprocess.run(
                full_cmd,
                cwd=self.repo_root,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            logger.error("Failed to run git: %s", exc)
            raise GitError(f"Failed to run git: {exc}") from exc

        if check and result.returncode != 0:
            logger.error(
                "Git command failed: %s\nSTDOUT: %s\nSTDERR: %s",
                " ".join(full_cmd),
                result.stdout,
                result.stderr,
            )
            raise GitError(result.stderr.strip() or result.stdout.strip())
        return result

    # ------------------------------------------------------------------
    # Commit history
    # ------------------------------------------------------------------
    def list_commits(self, revision_range: str = DEFAULT_RANGE) -> List[CommitUnit]:
        """Return the commits of ``revision_range``, oldest first.

        Diffs are not read here; each commit carries a loader that runs
        ``git show`` the first time its diff is needed.

        Raises
        ------
        GitError
            If the range cannot be resolved.
        """
        result = self._run(["log", "--reverse", f"--format={_LOG_FORMAT}", revision_range])
        commits: List[CommitUnit] = []
        for record in result.stdout.split(_RECORD_SEP):
            record = record.strip("\n")
            if not record.strip():
                continue
            fields = record.split(_FIELD_SEP, 3)
            if len(fields) != 4:
                logger.warning("Skipping unparsable log record: %r", record[:80])
                continue
            commit_hash, author, date, message = fields
            commit_hash = commit_hash.strip()
            commits.append(
                CommitUnit(
                    hash=commit_hash,
                    message=message.strip(),
                    files=tuple(self.get_file_stats(commit_hash)),
                    diff_loader=functools.partial(self.get_diff, commit_hash),
                    author=author,
                    date=date,
                )
            )
        logger.debug("Read %d commit(s) for range %s", len(commits), revision_range)
        return commits

    def get_file_stats(self, commit_hash: str) -> List[FileStat]:
        """Return per-file line counts and statuses of a commit."""
        numstat = self._run(["show", "--numstat", "--format=", "--no-renames", commit_hash])
        name_status = self._run(["show", "--name-status", "--format=", "--no-renames", commit_hash])

        statuses: Dict[str, str] = {}
        for line in name_status.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) >= 2 and parts[0]:
                statuses[parts[-1]] = parts[0][0]

        stats: List[FileStat] = []
        for line in numstat.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            added, removed = _parse_count(parts[0]), _parse_count(parts[1])
            path = parts[2]
            stats.append(FileStat(path=path, added=added, removed=removed, status=statuses.get(path, "M")))
        return stats

    def get_diff(self, commit_hash: str) -> str:
        """Return the unified diff of a commit, reading it once."""
        if commit_hash not in self._diff_cache:
            result = self._run(["show", "--format=", "--patch", "--no-color", commit_hash])
            self._diff_cache[commit_hash] = result.stdout
        return self._diff_cache[commit_hash]


def _parse_count(value: str) -> int:
    # Binary files are reported as "-".
    try:
        return int(value)
    except ValueError:
        return 0

