"""Base class for result sinks."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pyrothor.core.models import ScanResult


class ResultSink(ABC):
    """Destination for normalized scan results.

    Sinks persist or forward a ScanResult; each implements one target
    (local file, fleet controller, ...).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Sink identifier (e.g., 'json', 'controller')."""

    @abstractmethod
    def emit(self, result: ScanResult) -> None:
        """Deliver the result.

        Raises:
            PyroThorError or OSError: If delivery fails.
        """
