"""Workspace staging and release.

A workspace is a uniquely named temporary directory holding one job's
extracted scanner bundle. Only the WorkspaceManager creates, modifies
ownership of, or deletes files under a workspace root.
"""

from __future__ import annotations

import os
import shutil
import stat
import sys
import tempfile
import threading
import time
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from pyrothor.bootstrap.package import ArchiveHandle
from pyrothor.bootstrap.platform import DEFAULT_BINARY_PREFIX, PlatformProfile
from pyrothor.bootstrap.validation import ToolStatus, validate_binary
from pyrothor.core.errors import StagingError
from pyrothor.core.logging import get_logger
from pyrothor.core.models import Workspace

LOGGER = get_logger(__name__)

# Directory inside the bundle that holds the platform binaries
DEFAULT_BINARY_DIR = "Thor"

WORKSPACE_PREFIX = "pyrothor-"


def _is_writable_dir(path: Path) -> bool:
    return path.is_dir() and os.access(path, os.W_OK | os.X_OK)


def _make_writable_and_retry(func, path, _exc) -> None:
    """rmtree error handler: clear read-only bits and retry once."""
    try:
        os.chmod(path, stat.S_IWRITE | stat.S_IREAD | stat.S_IEXEC)
        func(path)
    except OSError as e:
        LOGGER.debug(f"Could not remove {path}: {e}")


def remove_tree(path: Path) -> bool:
    """Best-effort recursive delete. Returns True if the path is gone."""
    try:
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_make_writable_and_retry)
        else:
            shutil.rmtree(path, onerror=_make_writable_and_retry)
    except FileNotFoundError:
        return True
    except OSError as e:
        LOGGER.debug(f"rmtree failed for {path}: {e}")
    return not path.exists()


class WorkspaceManager:
    """Creates, populates and removes per-job workspaces.

    At most one live workspace exists per job id.
    """

    def __init__(
        self,
        temp_root: Optional[Path] = None,
        binary_dir: str = DEFAULT_BINARY_DIR,
        binary_prefix: str = DEFAULT_BINARY_PREFIX,
        cleanup: bool = True,
    ) -> None:
        self._temp_root = temp_root
        self._binary_dir = binary_dir
        self._binary_prefix = binary_prefix
        self._cleanup = cleanup
        self._live: Dict[str, Workspace] = {}
        self._reserved: Set[str] = set()
        self._lock = threading.Lock()

    def live_workspaces(self) -> List[Workspace]:
        with self._lock:
            return list(self._live.values())

    def resolve_temp_root(self, profile: PlatformProfile) -> Path:
        """Pick the parent directory for new workspaces."""
        candidates = [self._temp_root] if self._temp_root else []
        candidates.append(profile.temp_root)
        for candidate in candidates:
            if candidate is not None and _is_writable_dir(candidate):
                return candidate
        fallback = Path(tempfile.gettempdir())
        LOGGER.debug(f"Using {fallback} as workspace root")
        return fallback

    def stage(self, archive: ArchiveHandle, profile: PlatformProfile, job_id: str) -> Workspace:
        """Create a workspace for ``job_id`` and extract ``archive`` into it.

        Raises:
            StagingError: If the job already has a workspace, extraction
                fails, the platform binary is missing, or it cannot be
                made executable. No partial workspace is left behind.
        """
        with self._lock:
            if job_id in self._live:
                raise StagingError(f"Job already has a live workspace: {self._live[job_id].root_path}")
            if job_id in self._reserved:
                raise StagingError(f"Job {job_id} is already being staged")
            self._reserved.add(job_id)

        try:
            workspace = self._stage_reserved(archive, profile, job_id)
        finally:
            with self._lock:
                self._reserved.discard(job_id)
        return workspace

    def _stage_reserved(
        self, archive: ArchiveHandle, profile: PlatformProfile, job_id: str
    ) -> Workspace:
        parent = self.resolve_temp_root(profile)
        try:
            root = Path(tempfile.mkdtemp(prefix=f"{WORKSPACE_PREFIX}{job_id[:8]}-", dir=parent))
        except OSError as e:
            raise StagingError(f"Failed to create workspace under {parent}: {e}") from e

        LOGGER.info(f"Staging scanner package into {root}")
        try:
            owned = self._extract(archive.path, root)
            binary = self._locate_binary(root, profile)
            self._make_executable(binary, profile)
        except BaseException:
            if not remove_tree(root):
                LOGGER.warning(f"Failed to remove partial workspace {root}")
            raise

        workspace = Workspace(
            root_path=root,
            job_id=job_id,
            binary_path=binary,
            owned_files=owned,
        )
        with self._lock:
            self._live[job_id] = workspace
        return workspace

    def release(self, workspace: Workspace) -> None:
        """Remove a workspace. Never raises; failures are logged."""
        with self._lock:
            if workspace.released:
                return
            workspace.released = True
            if self._live.get(workspace.job_id) is workspace:
                del self._live[workspace.job_id]

        if not self._cleanup:
            LOGGER.info(f"Keeping workspace {workspace.root_path} (cleanup disabled)")
            return

        if remove_tree(workspace.root_path):
            LOGGER.debug(f"Released workspace {workspace.root_path}")
        else:
            LOGGER.warning(f"Failed to remove workspace {workspace.root_path}; residual files left")

    @contextmanager
    def staged(
        self, archive: ArchiveHandle, profile: PlatformProfile, job_id: str
    ) -> Iterator[Workspace]:
        """Stage a workspace and guarantee its release on exit."""
        workspace = self.stage(archive, profile, job_id)
        try:
            yield workspace
        finally:
            self.release(workspace)

    def _extract(self, archive_path: Path, root: Path) -> Set[Path]:
        """Extract a zip archive fully, refusing members that escape ``root``."""
        resolved_root = root.resolve()
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                for name in zf.namelist():
                    member_path = (resolved_root / name).resolve()
                    if Path(name).is_absolute() or not member_path.is_relative_to(resolved_root):
                        raise StagingError(f"Unsafe path in archive: {name}")
                zf.extractall(root)
                owned: Set[Path] = set()
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    extracted = root / info.filename
                    # Keep archive timestamps; rule cache freshness depends on them
                    mtime = time.mktime(info.date_time + (0, 0, -1))
                    os.utime(extracted, (mtime, mtime))
                    owned.add(extracted)
                return owned
        except zipfile.BadZipFile as e:
            raise StagingError(f"Invalid scanner package {archive_path}: {e}") from e
        except OSError as e:
            raise StagingError(f"Failed to extract scanner package: {e}") from e

    def _locate_binary(self, root: Path, profile: PlatformProfile) -> Path:
        name = profile.binary_name(self._binary_prefix)
        expected = root / self._binary_dir / name
        if expected.is_file():
            return expected
        matches = sorted(p for p in root.rglob(name) if p.is_file())
        if matches:
            LOGGER.debug(f"Scanner binary found outside {self._binary_dir}/: {matches[0]}")
            return matches[0]
        raise StagingError(f"Scanner binary {name} for {profile.os}-{profile.arch} not found in package")

    def _make_executable(self, binary: Path, profile: PlatformProfile) -> None:
        if profile.is_windows:
            return
        try:
            binary.chmod(binary.stat().st_mode | 0o111)
        except OSError as e:
            raise StagingError(f"Failed to set executable permission on {binary}: {e}") from e
        if validate_binary(binary) != ToolStatus.PRESENT:
            raise StagingError(f"Scanner binary is not executable: {binary}")
