# cancel.py
# Cooperative cancellation for a single run.
#
# The planner polls the token at every recursive entry and around every
# external reasoning call; it never interrupts a call in flight.

import time
from typing import Optional

from self_calling_agent.errors import CancelledError


class CancellationToken:
    def __init__(self, timeout_s: Optional[float] = None) -> None:
        self._cancel_requested = False
        self._reason = ""
        self._deadline = time.monotonic() + timeout_s if timeout_s is not None else None

    @property
    def cancelled(self) -> bool:
        if self._cancel_requested:
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._cancel_requested = True
            self._reason = "deadline exceeded"
        return self._cancel_requested

    @property
    def reason(self) -> str:
        return self._reason

    def request_cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._cancel_requested:
            self._reason = reason
        self._cancel_requested = True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError(self._reason or "cancelled")
