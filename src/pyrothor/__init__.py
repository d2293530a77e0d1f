"""pyrothor - orchestrates an external malware scanner across endpoints.

The scanner binary itself is an opaque dependency. This package acquires
the scanner bundle, stages it into an isolated workspace, runs it with a
deadline, normalizes its report and cleans up on every exit path.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
