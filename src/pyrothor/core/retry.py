"""Retry with exponential backoff for network-facing operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from pyrothor.core.cancellation import CancellationToken, NeverCancelled
from pyrothor.core.errors import NetworkError, ScanCancelledError
from pyrothor.core.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Only errors classified as transient are retried; permanent errors
    surface on the first attempt.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RetryPolicy":
        data = data or {}
        return cls(
            max_attempts=max(1, int(data.get("max_attempts", cls.max_attempts))),
            initial_delay=float(data.get("initial_delay", cls.initial_delay)),
            backoff_factor=float(data.get("backoff_factor", cls.backoff_factor)),
            max_delay=float(data.get("max_delay", cls.max_delay)),
        )

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry (``max_attempts - 1`` values)."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay)
            delay *= self.backoff_factor

    def run(
        self,
        operation: Callable[[], T],
        *,
        description: str = "operation",
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """Call ``operation`` until it succeeds or a non-retryable error occurs.

        Raises:
            NetworkError: The last error once attempts are exhausted,
                or the first permanent one.
            ScanCancelledError: If cancelled while waiting to retry.
        """
        token = cancel or NeverCancelled()
        delays = self.delays()
        attempt = 1
        while True:
            token.raise_if_cancelled()
            try:
                return operation()
            except NetworkError as e:
                if not e.retryable:
                    raise
                delay = next(delays, None)
                if delay is None:
                    LOGGER.warning(f"{description} failed after {attempt} attempt(s): {e.message}")
                    raise
                LOGGER.info(
                    f"{description} attempt {attempt} failed ({e.message}), "
                    f"retrying in {delay:.1f}s"
                )
                if token.wait(delay):
                    raise ScanCancelledError(f"{description} abandoned: {token.reason}") from e
                attempt += 1
