"""
Orchestration engine for vc_commit_refiner.

Token estimation, detail reduction and batch planning size commits to the
provider's budget; the executor runs the resulting units concurrently
with retry; the coherence refiner reconciles their results. See
:func:`vc_commit_refiner.engine.pipeline.run_pipeline` for a whole run.
"""

from .models import CommitUnit, DetailLevel, FileStat, RunReport, Unit, UnitResult  # noqa: F401
