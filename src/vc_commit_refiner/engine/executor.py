"""
Bounded-concurrency execution of planned units.

Each unit runs as an independent task in a thread pool of
``concurrency_limit`` workers, so at most that many provider calls are
in flight at any time. A unit's failure never cancels or affects other
units; the executor always drains every unit before returning. A batch
of several commits that fails is retried one commit at a time.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence, Tuple

from vc_commit_refiner.engine.models import Unit, UnitResult
from vc_commit_refiner.engine.retry import RetryController
from vc_commit_refiner.errors import PromptTooLarge, ProviderPermanent, RefinerError


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


DEFAULT_CONCURRENCY_LIMIT = 4

#: ``invoke(unit, retry)`` renders, validates and sends one unit and
#: returns its parsed payload together with the attempts made.
UnitInvoker = Callable[[Unit, RetryController], Tuple[Any, int]]
ProgressCallback = Callable[[int, int], None]


class ProgressCounter:
    """Thread-safe count of completed units."""

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None) -> None:
        self.total = total
        self._done = 0
        self._lock = threading.Lock()
        self._callback = callback

    @property
    def done(self) -> int:
        with self._lock:
            return self._done

    def increment(self) -> int:
        with self._lock:
            self._done += 1
            done = self._done
        if self._callback is not None:
            try:
                self._callback(done, self.total)
            except Exception:  # noqa: BLE001
                logger.exception("Progress callback failed at %d/%d", done, self.total)
        return done


def split_unit(unit: Unit) -> List[Unit]:
    """Return one single-commit unit per commit of ``unit``, keeping its index."""
    return [
        Unit(index=unit.index, commits=(planned,), estimated_tokens=planned.estimated_tokens)
        for planned in unit.commits
    ]


class ConcurrentExecutor:
    """Run units through a bounded worker pool.

    Parameters
    ----------
    concurrency_limit : int, optional
        Maximum number of units processed at once. Defaults to 4.
    retry : RetryController, optional
        Retry policy handed to every unit invocation.
    on_progress : Callable[[int, int], None], optional
        Called with ``(done, total)`` each time a unit completes.
    """

    def __init__(
        self,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        retry: Optional[RetryController] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.concurrency_limit = concurrency_limit
        self.retry = retry or RetryController()
        self.on_progress = on_progress

    def _invoke(self, unit: Unit, invoke: UnitInvoker) -> UnitResult:
        try:
            payload, attempts = invoke(unit, self.retry)
        except RefinerError as exc:
            exc.for_commits(unit.commit_hashes)
            logger.warning(
                "Unit %d (%d commit(s)) failed after %d attempt(s): %s",
                unit.index,
                len(unit),
                exc.attempts,
                exc,
            )
            return UnitResult(unit=unit, error=exc, attempts=exc.attempts)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while processing unit %d", unit.index)
            error = ProviderPermanent(f"Unexpected error: {exc}", unit.commit_hashes)
            return UnitResult(unit=unit, error=error, attempts=1)
        return UnitResult(unit=unit, payload=payload, attempts=attempts)

    def _process(self, unit: Unit, invoke: UnitInvoker) -> List[UnitResult]:
        """Process one unit, falling back to one call per commit if a batch fails.

        A prompt that is too large is not split: the planner already sized
        every commit on its own.
        """
        if unit.failure is not None:
            return [UnitResult(unit=unit, error=unit.failure, attempts=0)]
        result = self._invoke(unit, invoke)
        if result.succeeded or len(unit) == 1 or isinstance(result.error, PromptTooLarge):
            return [result]
        logger.warning("Batch of %d commit(s) failed, retrying individually: %s", len(unit), result.error)
        return [self._invoke(single, invoke) for single in split_unit(unit)]

    def run(self, units: Sequence[Unit], invoke: UnitInvoker) -> List[UnitResult]:
        """Process every unit and return its results, in unit order.

        A unit normally yields one result. A failed batch that was retried
        commit by commit yields one result per commit instead.
        """
        if not units:
            return []
        slots: List[List[UnitResult]] = [[] for _ in units]
        progress = ProgressCounter(len(units), self.on_progress)

        def task(slot: int, unit: Unit) -> None:
            # Each task owns exactly one slot and writes it once.
            slots[slot] = self._process(unit, invoke)
            progress.increment()

        workers = min(self.concurrency_limit, len(units))
        logger.debug("Running %d unit(s) with %d worker(s)", len(units), workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(task, slot, unit) for slot, unit in enumerate(units)]
            for future in futures:
                future.result()

        if any(not slot for slot in slots):
            raise RuntimeError("A unit finished without a result")
        return [result for slot in slots for result in slot]
