"""Submission of scan results to the fleet controller."""

from __future__ import annotations

import json
import socket
from http.client import HTTPException
from typing import Optional
from urllib.error import HTTPError, URLError

from pyrothor.bootstrap.download import build_request, secure_urlopen
from pyrothor.bootstrap.package import classify_http_status
from pyrothor.core.errors import FailureClass, SubmissionError
from pyrothor.core.logging import get_logger
from pyrothor.core.models import ScanResult
from pyrothor.core.retry import RetryPolicy
from pyrothor.reporting.base import ResultSink

LOGGER = get_logger(__name__)

RESULTS_PATH = "/api/scan-results"


class ControllerSubmitter(ResultSink):
    """POSTs results as JSON to ``{endpoint}/api/scan-results``.

    Uses the same retry classification as package downloads: 5xx,
    timeouts and connection errors are retried, other errors are not.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 300.0,
        retry_policy: Optional[RetryPolicy] = None,
        allow_insecure: bool = False,
    ) -> None:
        self._url = endpoint.rstrip("/") + RESULTS_PATH
        self._api_key = api_key
        self._timeout = timeout
        self._retry = retry_policy or RetryPolicy()
        self._allow_insecure = allow_insecure

    @property
    def name(self) -> str:
        return "controller"

    @property
    def url(self) -> str:
        return self._url

    def emit(self, result: ScanResult) -> None:
        LOGGER.info(f"[job {result.job_id}] Sending scan results to {self._url}")
        body = json.dumps(result.to_dict()).encode("utf-8")
        self._retry.run(
            lambda: self._post_once(body),
            description="Result submission",
        )
        LOGGER.info(f"[job {result.job_id}] Scan results sent to controller")

    def _post_once(self, body: bytes) -> None:
        request = build_request(
            self._url,
            method="POST",
            data=body,
            headers={"Content-Type": "application/json"},
            api_key=self._api_key,
        )
        try:
            with secure_urlopen(
                request, timeout=self._timeout, allow_insecure=self._allow_insecure
            ) as response:
                response.read()
        except HTTPError as e:
            raise SubmissionError(
                f"Failed to send results: HTTP {e.code} - {e.reason}",
                classify_http_status(e.code),
            ) from e
        except URLError as e:
            raise SubmissionError(
                f"Failed to send results: {e.reason}", FailureClass.TRANSIENT
            ) from e
        except (socket.timeout, TimeoutError, ConnectionError, HTTPException) as e:
            raise SubmissionError(
                f"Failed to send results: {e}", FailureClass.TRANSIENT
            ) from e
        except ValueError as e:
            raise SubmissionError(str(e), FailureClass.PERMANENT) from e
