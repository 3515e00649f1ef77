"""Retry policy with exponential backoff for tool execution.

:class:`RetryPolicy` is an immutable value shared read-only by every
tool call of an agent (and by agents cloned from one another).
:func:`retry_with_backoff` runs an operation under a policy:

* attempt 0 is the first try; a success ends the loop;
* a failure that :func:`is_retriable` rejects is re-raised at once;
* a retriable failure on the last allowed attempt is re-raised;
* otherwise the executor waits ``backoff`` seconds and tries again,
  with ``backoff = min(backoff * multiplier, max_backoff)``.

The wait races against a :class:`agentcore.signals.CancelScope`.  If
the scope fires while waiting, the cancellation error is raised instead
of the failure that triggered the retry.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Optional, Tuple, Union

from .errors import is_transient
from .signals import CancelScope

logger = logging.getLogger(__name__)

# Fallback markers for failures that carry no structural classification.
# Matched case-insensitively against ``str(exc)``.  English only.
RETRIABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "temporary failure",
    "temporarily unavailable",
    "rate limit",
    "too many requests",
    "429",
    "503",
    "deadline exceeded",
)

Operation = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Parameters
    ----------
    max_retries : int
        Attempts allowed beyond the first one.  ``0`` disables retries.
    initial_backoff : float
        Seconds to wait before the first retry.
    max_backoff : float
        Upper bound for any single wait.
    multiplier : float
        Growth factor applied to the wait after each retry.
    """

    max_retries: int = 2
    initial_backoff: float = 0.5
    max_backoff: float = 5.0
    multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        """Yield the wait preceding each retry, in order."""
        backoff = min(self.initial_backoff, self.max_backoff)
        for _ in range(max(0, self.max_retries)):
            yield backoff
            backoff = min(backoff * self.multiplier, self.max_backoff)

    def with_max_retries(self, max_retries: int) -> "RetryPolicy":
        return RetryPolicy(
            max_retries=max_retries,
            initial_backoff=self.initial_backoff,
            max_backoff=self.max_backoff,
            multiplier=self.multiplier,
        )


def default_retry_policy() -> RetryPolicy:
    """Two retries (three executions), 0.5s initial wait, capped at 5s."""
    return RetryPolicy()


def is_retriable(exc: Optional[BaseException]) -> bool:
    """Decide whether a failure is worth another attempt.

    Structural information wins: an explicit ``transient`` attribute
    (see :mod:`agentcore.errors`), then the builtin timeout and
    connection error types.  Untyped failures fall back to matching
    :data:`RETRIABLE_PATTERNS` against the error text.
    """
    if exc is None:
        return False
    flag = is_transient(exc)
    if flag is not None:
        return flag
    transient_types = (TimeoutError, asyncio.TimeoutError, ConnectionError)
    if isinstance(exc, transient_types) or isinstance(exc.__cause__, transient_types):
        return True
    text = str(exc).lower()
    return any(pattern in text for pattern in RETRIABLE_PATTERNS)


async def _call(operation: Operation) -> Any:
    value = operation()
    if inspect.isawaitable(value):
        value = await value
    return value


async def retry_with_backoff(
    operation: Operation,
    policy: RetryPolicy,
    scope: Optional[CancelScope] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> Tuple[Any, int]:
    """Execute ``operation`` under ``policy``.

    Parameters
    ----------
    operation : callable
        Zero argument callable, sync or async.
    policy : RetryPolicy
        Attempt budget and backoff parameters.
    scope : CancelScope, optional
        Cancellation scope raced against every wait.
    sleep : callable, optional
        Replacement for the wait when no scope is given (used by tests
        to record delays).

    Returns
    -------
    (value, attempts)
        The operation's value and the zero based index of the attempt
        that produced it.

    Raises
    ------
    Exception
        The last failure, with ``retry_attempts`` set to the number of
        retries performed, or the scope's cancellation error.
    """
    backoff = min(policy.initial_backoff, policy.max_backoff)
    attempt = 0
    while True:
        try:
            return await _call(operation), attempt
        except Exception as exc:
            if not is_retriable(exc):
                logger.debug("error not retriable (attempt %d): %s", attempt, exc)
                _annotate(exc, attempt)
                raise
            if attempt >= policy.max_retries:
                logger.warning("max retries reached (max_retries=%d): %s", policy.max_retries, exc)
                _annotate(exc, attempt)
                raise
            logger.info("retrying after backoff (attempt=%d, backoff=%.3fs): %s", attempt + 1, backoff, exc)

        if scope is not None:
            if await scope.wait(backoff):
                scope.raise_if_cancelled()
        elif sleep is not None:
            await sleep(backoff)
        else:
            await asyncio.sleep(backoff)
        backoff = min(backoff * policy.multiplier, policy.max_backoff)
        attempt += 1


def _annotate(exc: BaseException, attempts: int) -> None:
    try:
        exc.retry_attempts = attempts  # type: ignore[attr-defined]
    except AttributeError:
        pass
