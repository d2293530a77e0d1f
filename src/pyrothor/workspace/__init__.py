"""Per-job workspace staging, release and antivirus exclusion."""

from pyrothor.workspace.exclusion import (
    DefenderExclusion,
    ExclusionManager,
    NullExclusion,
    exclusion_for,
)
from pyrothor.workspace.manager import WorkspaceManager

__all__ = [
    "DefenderExclusion",
    "ExclusionManager",
    "NullExclusion",
    "WorkspaceManager",
    "exclusion_for",
]
