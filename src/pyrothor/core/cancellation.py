"""Cooperative cancellation for blocking pipeline steps."""

from __future__ import annotations

import threading
from typing import Optional

from pyrothor.core.errors import ScanCancelledError


class CancellationToken:
    """Thread-safe cancellation signal shared between a caller and a job.

    The caller sets the token; blocking steps either poll ``cancelled`` or
    use ``wait`` as an interruptible sleep.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def wait(self, timeout: Optional[float]) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, job_id: Optional[str] = None) -> None:
        if self._event.is_set():
            raise ScanCancelledError(self._reason or "cancelled", job_id=job_id)


class NeverCancelled(CancellationToken):
    """Token that ignores ``cancel``; used when the caller passes none."""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        pass
