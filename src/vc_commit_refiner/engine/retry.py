"""
Bounded retry with exponential backoff for provider calls.

Only :class:`~vc_commit_refiner.errors.ProviderTransient` failures are
retried. Size failures, authentication failures and malformed responses
are permanent and surface on the first attempt. Detail reduction handles
"too big"; this controller handles "didn't answer".
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, TypeVar

import tenacity

from vc_commit_refiner.errors import ProviderTransient, RefinerError


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


DEFAULT_MAX_ATTEMPTS = 3

T = TypeVar("T")


class RetryController:
    """Wrap a provider call with bounded retry.

    Parameters
    ----------
    max_attempts : int, optional
        Total attempts including the first one. Defaults to 3.
    backoff : float, optional
        Base delay in seconds; attempt ``n`` waits ``backoff * 2 ** (n - 1)``.
    max_backoff : float, optional
        Upper bound on a single delay.
    sleep : Callable[[float], None], optional
        Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: float = 1.0,
        max_backoff: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._exponential = tenacity.wait_exponential(multiplier=backoff, max=max_backoff)

    def _wait(self, retry_state: tenacity.RetryCallState) -> float:
        delay = self._exponential(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            delay = max(delay, min(float(retry_after), self.max_backoff))
        return delay

    def call(self, invoke: Callable[[], T]) -> Tuple[T, int]:
        """Call ``invoke`` until it succeeds or the attempts are exhausted.

        Returns
        -------
        Tuple[T, int]
            The value returned by ``invoke`` and the number of attempts made.

        Raises
        ------
        RefinerError
            The last error, with ``attempts`` set to the number of attempts
            made. Transient errors are raised once the attempts run out.
        """
        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception_type(ProviderTransient),
            stop=tenacity.stop_after_attempt(self.max_attempts),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        attempts = 0
        try:
            for attempt in retryer:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    value = invoke()
        except RefinerError as exc:
            exc.attempts = attempts
            raise
        return value, attempts
