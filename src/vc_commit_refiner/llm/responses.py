"""
Parsing of provider replies into amendment and check payloads.

Providers are asked to answer with a YAML document, optionally wrapped
in a Markdown code fence. Anything that cannot be turned into a valid
payload raises :class:`~vc_commit_refiner.errors.MalformedResponse` with
the raw text attached.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import yaml

from vc_commit_refiner.errors import MalformedResponse


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


_HEX_RE = re.compile(r"^[0-9a-fA-F]{4,40}$")
_FENCE_RE = re.compile(r"```(?:ya?ml)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
# Unquoted all-digit hashes would otherwise load as (octal) integers.
_BARE_HASH_RE = re.compile(r"^(\s*-?\s*commit:[ \t]*)([0-9a-fA-F]+)[ \t]*$", re.MULTILINE)

SEVERITIES = ("error", "warning", "info")


@dataclass(frozen=True)
class Amendment:
    """A suggested replacement message for one commit."""

    commit: str
    message: str
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"commit": self.commit, "message": self.message}
        if self.summary:
            data["summary"] = self.summary
        return data


@dataclass(frozen=True)
class CheckIssue:
    severity: str
    section: str
    rule: str
    explanation: str


@dataclass(frozen=True)
class CheckSuggestion:
    message: str
    explanation: str = ""


@dataclass(frozen=True)
class CommitCheck:
    """Validation verdict for one commit message."""

    commit: str
    passes: bool
    issues: List[CheckIssue] = field(default_factory=list)
    suggestion: Optional[CheckSuggestion] = None
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.suggestion is None:
            data.pop("suggestion")
        if not self.summary:
            data.pop("summary")
        return data

    def count(self, severity: str) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)


def extract_yaml_block(text: str) -> str:
    """Return the YAML document in ``text``, unwrapping a Markdown fence if present.

    Bare commit hashes are quoted so that they load as strings.
    """
    match = _FENCE_RE.search(text)
    document = match.group(1).strip() if match else text.strip()
    return _BARE_HASH_RE.sub(r'\1"\2"', document)


def load_yaml_mapping(text: str, key: str) -> List[Any]:
    """Parse ``text`` as YAML and return the list stored under ``key``.

    Raises
    ------
    MalformedResponse
        If the text is empty, is not valid YAML, or has no list under ``key``.
    """
    if not text or not text.strip():
        raise MalformedResponse("empty response", text)
    document = extract_yaml_block(text)
    try:
        data = yaml.safe_load(document)
    except yaml.YAMLError as exc:
        logger.debug("YAML parsing failed for response: %s", text)
        if "\t" in document:
            reason = "found tab characters; YAML requires spaces for indentation"
        else:
            reason = f"YAML parsing error: {exc}"
        raise MalformedResponse(reason, text) from exc
    if not isinstance(data, dict) or key not in data:
        raise MalformedResponse(f"expected a mapping with a '{key}' list", text)
    items = data[key]
    if items is None:
        return []
    if not isinstance(items, list):
        raise MalformedResponse(f"'{key}' must be a list", text)
    return items


def resolve_commit(reference: Any, known_hashes: Sequence[str], raw_text: str) -> str:
    """Map a (possibly abbreviated) hash from the reply to a known full hash."""
    value = str(reference or "").strip().strip('"').lower()
    if not _HEX_RE.match(value):
        raise MalformedResponse(f"invalid commit hash {reference!r}", raw_text)
    matches = [known for known in known_hashes if known.lower().startswith(value)]
    if len(matches) != 1:
        raise MalformedResponse(f"commit {reference!r} does not match exactly one commit", raw_text)
    return matches[0]


def parse_amendments(text: str, known_hashes: Sequence[str]) -> List[Amendment]:
    """Parse an ``amendments:`` reply restricted to ``known_hashes``."""
    amendments: List[Amendment] = []
    seen = set()
    for index, item in enumerate(load_yaml_mapping(text, "amendments")):
        if not isinstance(item, dict):
            raise MalformedResponse(f"amendment {index} is not a mapping", text)
        commit = resolve_commit(item.get("commit"), known_hashes, text)
        message = str(item.get("message") or "").strip()
        if not message:
            raise MalformedResponse(f"amendment {index} has an empty message", text)
        if commit in seen:
            raise MalformedResponse(f"commit {commit[:7]} amended more than once", text)
        seen.add(commit)
        amendments.append(Amendment(commit=commit, message=message, summary=str(item.get("summary") or "").strip()))
    return amendments


def _parse_issue(raw: Any, text: str) -> CheckIssue:
    if not isinstance(raw, dict):
        raise MalformedResponse("issue is not a mapping", text)
    severity = str(raw.get("severity") or "warning").strip().lower()
    if severity not in SEVERITIES:
        logger.debug("Unknown severity %r, defaulting to warning", severity)
        severity = "warning"
    return CheckIssue(
        severity=severity,
        section=str(raw.get("section") or "").strip(),
        rule=str(raw.get("rule") or "").strip(),
        explanation=str(raw.get("explanation") or "").strip(),
    )


def parse_checks(text: str, known_hashes: Sequence[str]) -> List[CommitCheck]:
    """Parse a ``checks:`` reply restricted to ``known_hashes``."""
    checks: List[CommitCheck] = []
    for index, item in enumerate(load_yaml_mapping(text, "checks")):
        if not isinstance(item, dict):
            raise MalformedResponse(f"check {index} is not a mapping", text)
        commit = resolve_commit(item.get("commit"), known_hashes, text)
        issues = [_parse_issue(issue, text) for issue in item.get("issues") or []]
        suggestion = None
        raw_suggestion = item.get("suggestion")
        if isinstance(raw_suggestion, dict) and str(raw_suggestion.get("message") or "").strip():
            suggestion = CheckSuggestion(
                message=str(raw_suggestion["message"]).strip(),
                explanation=str(raw_suggestion.get("explanation") or "").strip(),
            )
        passes = item.get("passes")
        if not isinstance(passes, bool):
            passes = not any(issue.severity == "error" for issue in issues)
        checks.append(
            CommitCheck(
                commit=commit,
                passes=passes,
                issues=issues,
                suggestion=suggestion,
                summary=str(item.get("summary") or "").strip(),
            )
        )
    return checks
