"""Cancellation scope shared by the turn loop, the tool orchestrator and retries.

A run can be interrupted from three places: the caller's own signal
(an :class:`asyncio.Event` passed to :meth:`agentcore.agent.Agent.run`),
the agent-wide cancellation token set by :meth:`Agent.close`, and the
agent's stop flag.  A run may also carry a deadline.  :class:`CancelScope`
folds all of them into one object so that every suspension point can
race against a single signal.

Cancellation is cooperative.  Nothing in this module interrupts an
in-flight provider or tool call; the loop checks the scope at
iteration boundaries and retries wait on it between attempts.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional

from .errors import AgentCancelledError, AgentError, AgentStoppedError, AgentTimeoutError


def _coerce_timeout(value: Optional[float]) -> Optional[float]:
    """Return a positive timeout in seconds or None if disabled/invalid."""
    if value is None:
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return None
    if timeout <= 0:
        return None
    return timeout


class CancelScope:
    """Composite cancellation signal.

    Parameters
    ----------
    *signals : asyncio.Event
        Cancellation events.  The scope is cancelled as soon as any of
        them is set.  ``None`` entries are ignored.
    stop : asyncio.Event, optional
        The agent's stop flag.  Reported as :class:`AgentStoppedError`
        rather than as a plain cancellation.
    timeout : float, optional
        Relative deadline in seconds.  Non-positive values disable it.
    """

    def __init__(
        self,
        *signals: Optional[asyncio.Event],
        stop: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._signals: List[asyncio.Event] = [s for s in signals if s is not None]
        self._stop = stop
        timeout_s = _coerce_timeout(timeout)
        self._deadline: Optional[float] = time.monotonic() + timeout_s if timeout_s is not None else None

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def _all_events(self) -> List[asyncio.Event]:
        events = list(self._signals)
        if self._stop is not None:
            events.append(self._stop)
        return events

    def error(self) -> Optional[AgentError]:
        """Return the error describing why the scope is cancelled, if it is."""
        if self._stop is not None and self._stop.is_set():
            return AgentStoppedError()
        if any(s.is_set() for s in self._signals):
            return AgentCancelledError()
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return AgentTimeoutError()
        return None

    def cancelled(self) -> bool:
        return self.error() is not None

    def raise_if_cancelled(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    async def wait(self, timeout: float) -> bool:
        """Sleep for ``timeout`` seconds unless the scope is cancelled first.

        Returns ``True`` when the wait ended because of cancellation
        (or the deadline) and ``False`` when the full interval elapsed.
        """
        if self.cancelled():
            return True
        delay = max(0.0, float(timeout))
        if self._deadline is not None:
            delay = min(delay, max(0.0, self._deadline - time.monotonic()))
        events = self._all_events()
        if not events:
            await asyncio.sleep(delay)
            return self.cancelled()
        waiters = [asyncio.ensure_future(e.wait()) for e in events]
        try:
            await asyncio.wait(waiters, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        return self.cancelled()
