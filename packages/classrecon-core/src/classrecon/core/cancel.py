"""Cooperative cancellation for long analysis passes."""

from __future__ import annotations

import logging

from classrecon.core.errors import AnalysisCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """A flag checked at safe points between units of work.

    The analysis never interrupts a unit (one class, one function, one call
    site) halfway; it only stops between them.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._cancelled:
            logger.info("Cancellation requested: %s", reason)
        self._cancelled = True
        self._reason = reason

    def check(self) -> None:
        """Raise :class:`AnalysisCancelled` if cancellation was requested."""
        if self._cancelled:
            raise AnalysisCancelled(self._reason)


class CountdownToken(CancellationToken):
    """Cancels itself after *budget* successful checks.

    Useful for bounding a run to a number of units of work.
    """

    def __init__(self, budget: int) -> None:
        super().__init__()
        self.remaining = budget

    def check(self) -> None:
        super().check()
        self.remaining -= 1
        if self.remaining <= 0:
            self.cancel("unit budget exhausted")
