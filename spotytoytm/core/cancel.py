"""Cancellation token shared by the collector and the migration engine."""

import threading
import time

from spotytoytm.core.models import MigrationCancelledError


class CancelToken:
    """Set by a signal handler or expired by a run deadline.

    Long-running loops call `raise_if_cancelled()` before every network call.
    """

    def __init__(self, timeout: float | None = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("run deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise MigrationCancelledError(self._reason)

    def sleep(self, seconds: float) -> None:
        """Wait up to `seconds`, waking early (and raising) on cancel or deadline."""
        end = time.monotonic() + seconds
        while True:
            self.raise_if_cancelled()
            now = time.monotonic()
            if now >= end:
                return
            limit = end if self._deadline is None else min(end, self._deadline)
            self._event.wait(max(0.0, limit - now))
