"""
One run of the engine: plan, execute, reconcile.

:func:`run_pipeline` ties the components together. Units produced by
either planning mode go through the same bounded executor.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence, Tuple

from vc_commit_refiner.config.loader import RunSettings
from vc_commit_refiner.engine.budget import TokenBudget, validate_prompt
from vc_commit_refiner.engine.coherence import CoherenceRefiner
from vc_commit_refiner.engine.executor import ConcurrentExecutor, ProgressCallback, UnitInvoker
from vc_commit_refiner.engine.models import CommitUnit, RunReport, Unit
from vc_commit_refiner.engine.planner import PlanMode, plan
from vc_commit_refiner.engine.retry import RetryController


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


def build_invoker(provider, task, budget: TokenBudget) -> UnitInvoker:
    """Return the per-unit call: render, validate, send with retry, parse."""

    def invoke(unit: Unit, retry: RetryController) -> Tuple[Any, int]:
        system_prompt, user_prompt = task.build_prompts(unit)
        estimate = validate_prompt(system_prompt, user_prompt, budget)
        logger.debug(
            "Unit %d: %d tokens (%.1f%% of budget), levels %s",
            unit.index,
            estimate.estimated_tokens,
            estimate.utilization_pct,
            ", ".join(level.name for level in unit.levels),
        )
        raw, attempts = retry.call(lambda: provider.send(system_prompt, user_prompt))
        return task.parse(unit, raw), attempts

    return invoke


def run_pipeline(
    commits: Sequence[CommitUnit],
    provider,
    task,
    settings: Optional[RunSettings] = None,
    on_progress: Optional[ProgressCallback] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """Process ``commits`` and return the ordered run report.

    Parameters
    ----------
    commits : Sequence[CommitUnit]
        Commits in input order.
    provider : AiProvider
        The provider selected for the run.
    task : UnitTask
        Prompt and parsing strategy (amend or check).
    settings : RunSettings, optional
        Concurrency, retry, batching and coherence settings.
    on_progress : Callable[[int, int], None], optional
        Progress callback receiving ``(done, total)`` units.
    sleep : Callable[[float], None], optional
        Sleep function used between retries.

    Returns
    -------
    RunReport
        Unit results ordered by input commit order. A failed batch that
        was retried commit by commit contributes one result per commit.
    """
    settings = settings or RunSettings()
    if not commits:
        logger.info("No commits to process")
        return RunReport()

    budget = TokenBudget.from_metadata(provider.metadata(), settings.safety_margin_ratio)
    mode = PlanMode.BATCH if settings.legacy_batch_size is not None else PlanMode.CONCURRENT
    units = plan(
        commits,
        budget,
        mode=mode,
        overhead_tokens=task.overhead_tokens(),
        max_batch_size=settings.legacy_batch_size,
        separator_tokens=task.separator_tokens(),
    )
    if len(units) < len(commits):
        logger.info("Grouped %d commits into %d batches by token budget", len(commits), len(units))

    retry = RetryController(
        max_attempts=settings.max_retry_attempts,
        backoff=settings.retry_backoff,
        sleep=sleep,
    )
    executor = ConcurrentExecutor(settings.concurrency_limit, retry=retry, on_progress=on_progress)
    results = executor.run(units, build_invoker(provider, task, budget))
    report = RunReport.from_results(results)
    if report.failed:
        logger.warning("%d of %d unit(s) failed", report.failed, len(report))

    if settings.coherence_enabled:
        report = CoherenceRefiner(provider, task, budget, retry).refine(report)
    return report
