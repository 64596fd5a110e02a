"""
Unit tasks: what is asked of the provider for a unit and how the answer is read.

A task turns a planned :class:`~vc_commit_refiner.engine.models.Unit` into
a system and user prompt, parses the provider's reply into a payload, and
knows how to fold a coherence reply back into the per-unit payloads.

- :class:`AmendTask` suggests improved commit messages.
- :class:`CheckTask` validates commit messages against guidelines.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

import yaml

from vc_commit_refiner.engine.detail import render_planned
from vc_commit_refiner.engine.models import Unit, UnitResult
from vc_commit_refiner.engine.tokens import estimate_tokens
from vc_commit_refiner.llm import prompts
from vc_commit_refiner.llm.responses import parse_amendments, parse_checks


class UnitTask:
    """Base class for the prompt and parsing strategy of a run."""

    name = "task"
    response_key = ""
    system_prompt = ""

    def user_prompt(self, rendered_commits: str) -> str:
        raise NotImplementedError

    def parse_items(self, raw: str, known_hashes: Sequence[str]) -> List[Any]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Per-unit prompts
    # ------------------------------------------------------------------
    def build_prompts(self, unit: Unit) -> Tuple[str, str]:
        rendered = prompts.render_commits(render_planned(planned) for planned in unit.commits)
        return self.system_prompt, self.user_prompt(rendered)

    def overhead_tokens(self) -> int:
        """Estimated tokens of the prompt with no commits in it."""
        return estimate_tokens(self.system_prompt) + estimate_tokens(self.user_prompt(""))

    def separator_tokens(self) -> int:
        """Estimated tokens added by joining one more commit into a prompt."""
        return estimate_tokens(prompts.COMMIT_SEPARATOR)

    def parse(self, unit: Unit, raw: str) -> List[Any]:
        return self.parse_items(raw, unit.commit_hashes)

    # ------------------------------------------------------------------
    # Coherence pass
    # ------------------------------------------------------------------
    def coherence_prompts(self, successes: Sequence[UnitResult]) -> Tuple[str, str]:
        entries: List[Dict[str, Any]] = [
            item.to_dict() for result in successes for item in (result.payload or [])
        ]
        document = yaml.safe_dump(
            {self.response_key: entries},
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )
        return prompts.COHERENCE_SYSTEM_PROMPT, prompts.coherence_user_prompt(document)

    def apply_coherence(self, successes: Sequence[UnitResult], raw: str) -> List[UnitResult]:
        """Replace payload items with their reconciled versions.

        Items the reply does not mention keep their original value; the
        reply cannot add entries for commits a unit did not produce.
        """
        known = [commit_hash for result in successes for commit_hash in result.unit.commit_hashes]
        refined = {item.commit: item for item in self.parse_items(raw, known)}
        return [
            result.with_payload([refined.get(item.commit, item) for item in (result.payload or [])])
            for result in successes
        ]


class AmendTask(UnitTask):
    name = "amend"
    response_key = "amendments"
    system_prompt = prompts.AMEND_SYSTEM_PROMPT

    def user_prompt(self, rendered_commits: str) -> str:
        return prompts.amend_user_prompt(rendered_commits)

    def parse_items(self, raw: str, known_hashes: Sequence[str]) -> List[Any]:
        return parse_amendments(raw, known_hashes)


class CheckTask(UnitTask):
    name = "check"
    response_key = "checks"
    system_prompt = prompts.CHECK_SYSTEM_PROMPT

    def user_prompt(self, rendered_commits: str) -> str:
        return prompts.check_user_prompt(rendered_commits)

    def parse_items(self, raw: str, known_hashes: Sequence[str]) -> List[Any]:
        return parse_checks(raw, known_hashes)


def create_task(check: bool = False) -> UnitTask:
    return CheckTask() if check else AmendTask()
