"""
Cross-unit coherence pass.

Units are processed independently, so two units may describe the same
concept with different words or pick different scopes for related
changes. The refiner sends every successful payload to the provider in
one extra request and folds the reconciled answer back in. Refinement is
best-effort: if it fails for any reason the report is returned unchanged.
"""

from __future__ import annotations

import logging
from typing import Optional

from vc_commit_refiner.engine.budget import TokenBudget, validate_prompt
from vc_commit_refiner.engine.models import RunReport
from vc_commit_refiner.engine.retry import RetryController
from vc_commit_refiner.errors import RefinerError


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


class CoherenceRefiner:
    """Reconcile per-unit results with one additional provider call.

    Parameters
    ----------
    provider : AiProvider
        The provider used for the run.
    task : UnitTask
        Builds the coherence prompt and merges the reply.
    budget : TokenBudget
        Budget the coherence prompt is validated against.
    retry : RetryController, optional
        Retry policy for the coherence call.
    """

    def __init__(self, provider, task, budget: TokenBudget, retry: Optional[RetryController] = None) -> None:
        self.provider = provider
        self.task = task
        self.budget = budget
        self.retry = retry or RetryController()

    @staticmethod
    def should_refine(report: RunReport) -> bool:
        return len(report) > 1 and report.succeeded > 0

    def refine(self, report: RunReport) -> RunReport:
        """Return ``report`` with successful payloads reconciled.

        Failed units pass through untouched. A report with a single unit,
        or with no successful unit, is returned as is without a call.
        """
        if not self.should_refine(report):
            logger.debug("Skipping coherence pass (%d unit(s), %d succeeded)", len(report), report.succeeded)
            return report

        successes = report.successes()
        try:
            system_prompt, user_prompt = self.task.coherence_prompts(successes)
            validate_prompt(system_prompt, user_prompt, self.budget)
            raw, attempts = self.retry.call(lambda: self.provider.send(system_prompt, user_prompt))
            refined = self.task.apply_coherence(successes, raw)
        except RefinerError as exc:
            logger.warning("Coherence pass failed, using individual results: %s", exc)
            return report

        logger.debug("Coherence pass reconciled %d unit(s) in %d attempt(s)", len(refined), attempts)
        replacements = {result.unit.index: result for result in refined}
        merged = [replacements.get(result.unit.index, result) for result in report.results]
        return RunReport.from_results(merged, coherence_applied=True)
