"""Scanner invocation and report normalization."""

from pyrothor.scanner.exit_codes import ExitCodeTable
from pyrothor.scanner.invoker import DEFAULT_FLAGS, ScannerInvoker
from pyrothor.scanner.normalizer import ResultNormalizer
from pyrothor.scanner.targets import TargetFilter

__all__ = [
    "DEFAULT_FLAGS",
    "ExitCodeTable",
    "ResultNormalizer",
    "ScannerInvoker",
    "TargetFilter",
]
