"""Shared fixtures for pyrothor tests."""

from __future__ import annotations

import sys
import textwrap
import threading
import zipfile
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import pytest

from pyrothor.bootstrap.platform import PlatformProfile, profile_for


def _stub_scanner(body: str) -> str:
    return f"#!{sys.executable}\n" + textwrap.dedent(body).lstrip("\n")


@pytest.fixture
def stub_scanner() -> Callable[[str], str]:
    """Turn Python code into an executable stub scanner script."""
    return _stub_scanner


@pytest.fixture(autouse=True)
def pyrothor_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point PYROTHOR_HOME at a per-test directory."""
    home = tmp_path / "pyrothor-home"
    monkeypatch.setenv("PYROTHOR_HOME", str(home))
    return home


@pytest.fixture
def linux_profile() -> PlatformProfile:
    return profile_for("linux", "x64")


@pytest.fixture
def windows_profile() -> PlatformProfile:
    return profile_for("windows", "x64")


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def make_bundle(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a scanner bundle zip.

    ``scanner`` becomes ``Thor/<binary_name>``; ``files`` adds extra
    members (name -> text).
    """

    def _make(
        scanner: Optional[str] = None,
        binary_name: str = "thor-lite_x86_64",
        files: Optional[Dict[str, str]] = None,
        name: str = "bundle.zip",
    ) -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            if scanner is not None:
                zf.writestr(f"Thor/{binary_name}", scanner)
            zf.writestr("config/thor.yml", "module: Filescan\n")
            zf.writestr("custom-signatures/yara/README.txt", "signatures\n")
            for member, content in (files or {}).items():
                zf.writestr(member, content)
        return path

    return _make


class _Route:
    """Queue of canned responses for one path; the last one repeats."""

    def __init__(self, responses):
        self.responses = list(responses)

    def next(self):
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class LocalServer:
    """Loopback HTTP server serving canned responses.

    Each response is ``(status, body, headers)``. Requests are recorded as
    ``(method, path, headers, body)``.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, _Route] = {}
        self.requests: List[Tuple[str, str, Dict[str, str], bytes]] = []
        server = self

        class Handler(BaseHTTPRequestHandler):
            def _respond(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length) if length else b""
                server.requests.append((self.command, self.path, dict(self.headers), body))
                route = server.routes.get(self.path)
                if route is None:
                    status, payload, headers = 404, b"not found", {}
                else:
                    status, payload, headers = route.next()
                self.send_response(status)
                headers = dict(headers)
                headers.setdefault("Content-Length", str(len(payload)))
                for key, value in headers.items():
                    self.send_header(key, value)
                self.end_headers()
                self.wfile.write(payload)

            do_GET = _respond
            do_POST = _respond

            def log_message(self, format, *args) -> None:
                pass

        self._httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        host, port = self._httpd.server_address[:2]
        return f"http://{host}:{port}"

    def url(self, path: str) -> str:
        return self.base_url + path

    def add(self, path: str, *responses: Tuple[int, bytes, Dict[str, str]]) -> None:
        self.routes[path] = _Route(responses)

    def count(self, path: str) -> int:
        return sum(1 for _, p, _, _ in self.requests if p == path)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._httpd.shutdown()
        self._httpd.server_close()


@pytest.fixture
def http_server() -> Iterator[LocalServer]:
    server = LocalServer()
    server.start()
    try:
        yield server
    finally:
        server.stop()
