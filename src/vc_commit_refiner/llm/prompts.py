"""
Prompt templates for amending, checking and reconciling commit messages.
"""

from __future__ import annotations

from textwrap import dedent
from typing import Iterable


COMMIT_SEPARATOR = "\n---\n"

AMEND_SYSTEM_PROMPT = dedent(
    """
    You are an expert software engineer helping improve git commit messages.
    You will receive one or more commits with their original messages, the
    files they change and, when it fits, their diffs. Suggest improved
    messages that follow the conventional commit format and best practices.

    Rules:
    1. Follow conventional commit format: type(scope): description
    2. Types: feat, fix, docs, style, refactor, test, chore, ci, build, perf
    3. Keep subject lines under 50 characters when possible
    4. Use imperative mood ("Add feature" not "Added feature")
    5. Describe what the commit does and why, based on the diff
    6. Only suggest changes for commits that would benefit from improvement
    7. Preserve the commit's original intent while improving clarity

    Respond ONLY with a YAML document in this exact format:
    ```yaml
    amendments:
      - commit: "full-commit-hash"
        message: "improved commit message"
        summary: "one line describing what the commit changes"
    ```
    """
).strip()

CHECK_SYSTEM_PROMPT = dedent(
    """
    You are an expert reviewer validating git commit messages against the
    conventional commit guidelines. For every commit you receive, decide
    whether its message passes, list the issues you find and, when it does
    not pass, suggest a corrected message.

    Severity levels:
    - error: the message is wrong or misleading (wrong type, empty body for
      a large change, subject does not describe the change)
    - warning: the message breaks a style rule (past tense, subject too
      long, missing scope)
    - info: optional improvements

    Respond ONLY with a YAML document in this exact format:
    ```yaml
    checks:
      - commit: "full-commit-hash"
        passes: false
        issues:
          - severity: warning
            section: "Subject"
            rule: "Use imperative mood"
            explanation: "The subject uses past tense"
        suggestion:
          message: "corrected commit message"
          explanation: "why the suggestion is better"
        summary: "one line describing what the commit changes"
    ```
    """
).strip()

COHERENCE_SYSTEM_PROMPT = dedent(
    """
    You are reviewing commit message suggestions that were produced
    independently for commits of the same branch. Make them consistent with
    each other: use the same terminology for the same concepts, the same
    type and scope for related changes, and a consistent tone. Do not change
    facts, do not add or drop commits, and keep each commit hash unchanged.

    Answer with the same YAML structure you receive, containing every entry.
    """
).strip()


def render_commits(rendered: Iterable[str]) -> str:
    return COMMIT_SEPARATOR.join(rendered)


def amend_user_prompt(rendered_commits: str) -> str:
    return dedent(
        """
        Please analyze the following commits and suggest commit message improvements:

        {commits}

        Focus on commits that:
        - Don't follow conventional commit format
        - Have unclear or vague descriptions
        - Use past tense instead of imperative mood
        - Are too verbose or too brief
        - Could benefit from proper type/scope classification

        Only include commits that actually need improvement. If all commits are
        already well-formatted, return an empty amendments list.
        """
    ).strip().format(commits=rendered_commits)


def check_user_prompt(rendered_commits: str) -> str:
    return dedent(
        """
        Please check the following commit messages against the guidelines:

        {commits}

        Return exactly one entry per commit, including commits that pass.
        """
    ).strip().format(commits=rendered_commits)


def coherence_user_prompt(document: str) -> str:
    return dedent(
        """
        Here are the per-commit results to reconcile:

        {document}

        Return the reconciled YAML document.
        """
    ).strip().format(document=document)
