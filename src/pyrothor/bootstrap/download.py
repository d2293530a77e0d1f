"""Secure HTTP transport with SSL certificate handling.

Uses certifi's CA bundle so that frozen binaries and minimal endpoint
images verify TLS the same way as a full Python install.
"""

from __future__ import annotations

import ssl
from typing import Dict, Optional
from urllib.parse import urlparse
from urllib.request import Request, urlopen

import certifi

from pyrothor import __version__

USER_AGENT = f"pyrothor/{__version__}"

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def get_ssl_context() -> ssl.SSLContext:
    """Get an SSL context that uses certifi's CA bundle.

    Returns:
        An SSL context configured with certifi's CA certificates.
    """
    return ssl.create_default_context(cafile=certifi.where())


def check_url(url: str, allow_insecure: bool = False) -> None:
    """Reject URLs the transport will not talk to.

    Plain HTTP is only accepted for loopback hosts, or anywhere when
    ``allow_insecure`` is set.

    Raises:
        ValueError: If the URL scheme is not allowed.
    """
    parsed = urlparse(url)
    if parsed.scheme == "https":
        return
    if parsed.scheme == "http" and (allow_insecure or parsed.hostname in _LOOPBACK_HOSTS):
        return
    raise ValueError(f"Only HTTPS URLs are supported: {url}")


def build_request(
    url: str,
    *,
    method: str = "GET",
    data: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
    api_key: Optional[str] = None,
) -> Request:
    """Build a request with the pyrothor user agent and optional bearer token."""
    all_headers = {"User-Agent": USER_AGENT}
    if api_key:
        all_headers["Authorization"] = f"Bearer {api_key}"
    if headers:
        all_headers.update(headers)
    return Request(url, data=data, headers=all_headers, method=method)


def secure_urlopen(
    request: Request,
    timeout: Optional[float] = 30.0,
    allow_insecure: bool = False,
):
    """Open a request with proper SSL certificate verification.

    Args:
        request: The request to send.
        timeout: Socket timeout in seconds.
        allow_insecure: Permit plain HTTP to non-loopback hosts.

    Returns:
        A file-like HTTP response.

    Raises:
        URLError: If the URL cannot be opened.
        HTTPError: If the server answers with an error status.
        ValueError: If the URL scheme is not allowed.
    """
    check_url(request.full_url, allow_insecure=allow_insecure)
    if request.full_url.startswith("https://"):
        return urlopen(request, timeout=timeout, context=get_ssl_context())  # nosec B310
    return urlopen(request, timeout=timeout)  # nosec B310
