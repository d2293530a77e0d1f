"""Scanner package acquisition.

Obtains the zipped scanner bundle from a remote endpoint or a local path,
verifies its integrity and keeps a content-addressed copy in the local
package cache so identical bundles are fetched once.
"""

from __future__ import annotations

import hashlib
import os
import socket
import tempfile
import threading
from dataclasses import dataclass
from http.client import HTTPException
from pathlib import Path
from typing import Dict, List, Optional
from urllib.error import HTTPError, URLError

from pyrothor.bootstrap.download import build_request, secure_urlopen
from pyrothor.core.cancellation import CancellationToken, NeverCancelled
from pyrothor.core.errors import AcquisitionError, FailureClass, ScanCancelledError
from pyrothor.core.logging import get_logger
from pyrothor.core.retry import RetryPolicy

LOGGER = get_logger(__name__)

# Default bundle file name, also used as the remote tool name
DEFAULT_PACKAGE_NAME = "Custom.DFIR.Yara.AllRules.zip"

# Default socket timeout for downloads (seconds)
DEFAULT_FETCH_TIMEOUT = 300.0

_CHUNK_SIZE = 1024 * 1024

# HTTP statuses that are worth retrying besides 5xx
_TRANSIENT_STATUSES = frozenset({408, 425, 429})


def classify_http_status(status: int) -> FailureClass:
    """Map an HTTP error status to a retry classification."""
    if status >= 500 or status in _TRANSIENT_STATUSES:
        return FailureClass.TRANSIENT
    return FailureClass.PERMANENT


def _parse_length(value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise AcquisitionError(
            f"Malformed Content-Length header: {value!r}", FailureClass.TRANSIENT
        ) from e


def sha256_file(path: Path) -> str:
    """Return the hex SHA-256 digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass(frozen=True)
class PackageSource:
    """Where the scanner bundle comes from.

    ``location`` is either an http(s) URL or a filesystem path.
    """

    location: str
    sha256: Optional[str] = None
    size: Optional[int] = None
    api_key: Optional[str] = None
    timeout: float = DEFAULT_FETCH_TIMEOUT
    allow_insecure: bool = False

    @property
    def is_remote(self) -> bool:
        return self.location.startswith(("http://", "https://"))

    @property
    def path(self) -> Path:
        return Path(self.location).expanduser()


@dataclass(frozen=True)
class ArchiveHandle:
    """A verified scanner bundle on local disk."""

    path: Path
    sha256: str
    size: int
    source: str


class PackageCache:
    """Content-addressed store of scanner bundles.

    Layout: ``{root}/{sha[:2]}/{sha}.zip``. Entries are write-once: a
    second write of the same hash is a no-op. Concurrent readers need no
    locking because entries only appear through an atomic rename; writers
    of the same hash are serialized by a per-key lock.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, sha256: str) -> Path:
        return self._root / sha256[:2] / f"{sha256}.zip"

    def get(self, sha256: str) -> Optional[Path]:
        path = self.path_for(sha256)
        return path if path.is_file() else None

    def _lock_for(self, sha256: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(sha256, threading.Lock())

    def new_temp_file(self) -> Path:
        """Create an empty temp file inside the cache root for downloads."""
        self._root.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=".download-", suffix=".part", dir=self._root)
        os.close(fd)
        return Path(name)

    def put(self, temp_path: Path, sha256: str) -> Path:
        """Move a verified temp file into the cache under its hash.

        Returns:
            Path of the cached entry.
        """
        dest = self.path_for(sha256)
        with self._lock_for(sha256):
            if dest.is_file():
                LOGGER.debug(f"Package {sha256[:12]} already cached")
                temp_path.unlink(missing_ok=True)
                return dest
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(temp_path, dest)
        LOGGER.debug(f"Cached package {sha256[:12]} at {dest}")
        return dest

    def entries(self) -> List[Path]:
        """List cached bundles."""
        if not self._root.exists():
            return []
        return sorted(self._root.glob("*/*.zip"))


class PackageAcquirer:
    """Obtains the scanner bundle and verifies it.

    Transient failures (timeouts, connection errors, 5xx) are retried
    according to ``retry_policy``; permanent ones (404, checksum or size
    mismatch) surface immediately.
    """

    def __init__(
        self,
        cache: PackageCache,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._cache = cache
        self._retry = retry_policy or RetryPolicy()

    @property
    def cache(self) -> PackageCache:
        return self._cache

    def acquire(
        self,
        source: PackageSource,
        cancel: Optional[CancellationToken] = None,
    ) -> ArchiveHandle:
        """Return a verified handle to the bundle described by ``source``.

        Raises:
            AcquisitionError: If the bundle cannot be obtained or verified.
            ScanCancelledError: If cancelled during the fetch.
        """
        if not source.is_remote:
            return self._acquire_local(source)

        if source.sha256:
            cached = self._cache.get(source.sha256.lower())
            if cached is not None:
                LOGGER.info(f"Using cached package {source.sha256[:12]}")
                return ArchiveHandle(
                    path=cached,
                    sha256=source.sha256.lower(),
                    size=cached.stat().st_size,
                    source=source.location,
                )

        return self._retry.run(
            lambda: self._fetch_once(source, cancel or NeverCancelled()),
            description=f"Download of {source.location}",
            cancel=cancel,
        )

    def _acquire_local(self, source: PackageSource) -> ArchiveHandle:
        path = source.path
        if not path.is_file() or not os.access(path, os.R_OK):
            raise AcquisitionError(
                f"Package not found or not readable: {path}", FailureClass.NOT_FOUND
            )
        LOGGER.info(f"Using local package: {path}")
        try:
            digest = sha256_file(path)
            size = path.stat().st_size
        except OSError as e:
            raise AcquisitionError(
                f"Cannot read package {path}: {e}", FailureClass.NOT_FOUND
            ) from e
        self._verify(source, digest, size)
        return ArchiveHandle(path=path, sha256=digest, size=size, source=str(path))

    def _verify(self, source: PackageSource, digest: str, size: int) -> None:
        if source.size is not None and size != source.size:
            raise AcquisitionError(
                f"Package size mismatch: expected {source.size} bytes, got {size}",
                FailureClass.PERMANENT,
            )
        if source.sha256 and digest != source.sha256.lower():
            raise AcquisitionError(
                f"Package checksum mismatch: expected {source.sha256}, got {digest}",
                FailureClass.PERMANENT,
            )

    def _fetch_once(self, source: PackageSource, cancel: CancellationToken) -> ArchiveHandle:
        LOGGER.info(f"Downloading scanner package from {source.location}")
        request = build_request(source.location, api_key=source.api_key)
        temp_path = self._cache.new_temp_file()
        try:
            digest = hashlib.sha256()
            received = 0
            try:
                with secure_urlopen(
                    request, timeout=source.timeout, allow_insecure=source.allow_insecure
                ) as response:
                    expected_length = response.headers.get("Content-Length")
                    with open(temp_path, "wb") as out:
                        for chunk in iter(lambda: response.read(_CHUNK_SIZE), b""):
                            if cancel.cancelled:
                                raise ScanCancelledError(
                                    f"Download abandoned: {cancel.reason}"
                                )
                            digest.update(chunk)
                            out.write(chunk)
                            received += len(chunk)
            except HTTPError as e:
                raise AcquisitionError(
                    f"Failed to download package: HTTP {e.code} - {e.reason}",
                    classify_http_status(e.code),
                ) from e
            except URLError as e:
                raise AcquisitionError(
                    f"Failed to download package: {e.reason}", FailureClass.TRANSIENT
                ) from e
            except (socket.timeout, TimeoutError, ConnectionError, HTTPException) as e:
                raise AcquisitionError(
                    f"Failed to download package: {e}", FailureClass.TRANSIENT
                ) from e
            except OSError as e:
                raise AcquisitionError(
                    f"Failed to store package: {e}", FailureClass.PERMANENT
                ) from e
            except ValueError as e:
                raise AcquisitionError(str(e), FailureClass.PERMANENT) from e

            if expected_length is not None and _parse_length(expected_length) != received:
                raise AcquisitionError(
                    f"Truncated download: expected {expected_length} bytes, got {received}",
                    FailureClass.TRANSIENT,
                )

            hexdigest = digest.hexdigest()
            self._verify(source, hexdigest, received)
            LOGGER.info(f"Package downloaded ({received / 1024 / 1024:.1f} MB)")
            cached = self._cache.put(temp_path, hexdigest)
            return ArchiveHandle(
                path=cached, sha256=hexdigest, size=received, source=source.location
            )
        finally:
            temp_path.unlink(missing_ok=True)
