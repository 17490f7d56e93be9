# app/services/pbx_client.py
"""
Grandstream UCM API client.

- Logs in with a JSON POST and keeps the session cookie for later GETs.
- Tolerates self-signed certificates unless `verify_ssl` is set.
- `download_recording` retries on 404 (recording not ready yet) with
  5s/10s/20s backoff and re-authenticates on 401 (session expired).
  A rejected login is never retried; it raises `PbxLoginError` at once.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import requests

log = logging.getLogger(__name__)

MAX_DOWNLOAD_ATTEMPTS = 3
BACKOFF_DELAYS_SECONDS = (5, 10, 20)
DEFAULT_AUTH_TIMEOUT_SECONDS = 10.0
DEFAULT_DOWNLOAD_TIMEOUT_SECONDS = 30.0


@dataclass
class PbxConfig:
    host: str
    port: int
    username: str
    password: str
    verify_ssl: bool = False
    protocol: str = "https"

    @property
    def api_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}/cgi-bin/api.cgi"


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    error: Optional[str] = None
    response_time_ms: int = 0


@dataclass
class DownloadResult:
    content: bytes
    size_bytes: int
    attempts: int


class PbxError(Exception):
    """Base class for everything the PBX client raises."""


class PbxHttpError(PbxError):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class PbxAuthenticationError(PbxError):
    pass


class PbxLoginError(PbxAuthenticationError):
    """The login POST itself was rejected (non-2xx)."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class RecordingNotReadyError(PbxError):
    pass


class PbxApiError(PbxError):
    """The UCM answered with its JSON error envelope."""


class PbxConnectionError(PbxError):
    def __init__(self, category: str, message: str):
        super().__init__(message)
        self.category = category


def classify_connection_error(exc: Exception) -> Tuple[str, str]:
    """
    Map a low-level requests exception to (category, operator message).
    """
    text = str(exc).lower()

    if isinstance(exc, requests.exceptions.Timeout):
        return "timeout", "Connection timed out"

    if isinstance(exc, requests.exceptions.SSLError):
        if "expired" in text:
            return "cert-expired", "SSL certificate expired"
        if "self signed" in text or "self-signed" in text:
            return "self-signed", "Self-signed certificate (disable verify_ssl)"
        return "ssl", f"SSL error: {exc}"

    if "refused" in text:
        return "refused", "Connection refused - UCM may be offline or unreachable"
    if (
        "name or service not known" in text
        or "nodename nor servname" in text
        or "getaddrinfo failed" in text
        or "failed to resolve" in text
        or "temporary failure in name resolution" in text
    ):
        return "dns", "Host not found - check hostname/IP address"
    if "unreachable" in text or "no route to host" in text:
        return "unreachable", "Host unreachable - check network connectivity"
    if "reset" in text:
        return "reset", "Connection reset by UCM"

    return "network", f"Network error: {exc}"


class GrandstreamClient:
    def __init__(
        self,
        config: PbxConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT_SECONDS,
        download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT_SECONDS,
    ):
        self.config = config
        self._session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._auth_timeout = auth_timeout
        self._download_timeout = download_timeout
        self._cookie: Optional[str] = None

    # ---------- Low level ----------

    def _request(self, method: str, timeout: float, **kwargs) -> requests.Response:
        try:
            return self._session.request(
                method,
                self.config.api_url,
                timeout=timeout,
                verify=self.config.verify_ssl,
                **kwargs,
            )
        except requests.RequestException as exc:
            category, message = classify_connection_error(exc)
            raise PbxConnectionError(category, message) from exc

    def authenticate(self, timeout: Optional[float] = None) -> str:
        """
        Log in and remember the session cookie. Returns the cookie.
        """
        payload = {
            "action": "login",
            "username": self.config.username,
            "password": self.config.password,
            "secure": 1,
        }
        resp = self._request("POST", timeout or self._auth_timeout, json=payload)

        if not resp.ok:
            raise PbxLoginError(resp.status_code, f"Authentication failed: HTTP {resp.status_code}")

        set_cookie = resp.headers.get("Set-Cookie")
        if not set_cookie:
            raise PbxAuthenticationError("No session cookie received from UCM")

        self._cookie = set_cookie.split(";")[0]
        return self._cookie

    def _authenticated_get(self, params: dict, timeout: float) -> requests.Response:
        return self._request(
            "GET",
            timeout,
            params=params,
            headers={"Cookie": self._cookie or ""},
        )

    @staticmethod
    def _error_envelope(resp: requests.Response) -> Optional[str]:
        content_type = resp.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        if isinstance(data, dict) and data.get("response") == "error":
            return data.get("message") or "Unknown UCM error"
        return None

    # ---------- Public API ----------

    def test_connection(self, timeout_ms: int = 10000) -> ConnectionTestResult:
        """
        Log in, then issue one authenticated read-only call (listPbx).
        Never raises and never retries.
        """
        start = self._clock()
        timeout = timeout_ms / 1000

        def elapsed() -> int:
            return int((self._clock() - start) * 1000)

        try:
            try:
                self.authenticate(timeout=timeout)
            except PbxLoginError as exc:
                return ConnectionTestResult(False, "Authentication failed", str(exc), elapsed())
            except PbxAuthenticationError as exc:
                return ConnectionTestResult(False, "No session cookie received", str(exc), elapsed())

            resp = self._authenticated_get({"action": "listPbx"}, timeout)
            if not resp.ok:
                return ConnectionTestResult(
                    False,
                    "Authenticated request failed",
                    f"HTTP {resp.status_code}",
                    elapsed(),
                )

            ucm_error = self._error_envelope(resp)
            if ucm_error is not None:
                return ConnectionTestResult(False, "UCM returned error", ucm_error, elapsed())

            return ConnectionTestResult(True, "Connection successful", None, elapsed())

        except PbxConnectionError as exc:
            if exc.category == "timeout":
                return ConnectionTestResult(
                    False,
                    "Connection timeout",
                    f"Request timed out after {timeout_ms}ms",
                    elapsed(),
                )
            return ConnectionTestResult(False, "Network error", str(exc), elapsed())

    def _fetch_recording(self, filename: str) -> bytes:
        resp = self._authenticated_get(
            {"action": "getRecording", "recordingFile": filename},
            self._download_timeout,
        )
        if not resp.ok:
            raise PbxHttpError(resp.status_code, f"HTTP {resp.status_code}")

        ucm_error = self._error_envelope(resp)
        if ucm_error is not None:
            raise PbxApiError(f"UCM returned error: {ucm_error}")

        return resp.content

    def download_recording(self, filename: str) -> DownloadResult:
        attempts = 0

        while attempts < MAX_DOWNLOAD_ATTEMPTS:
            attempts += 1
            try:
                if self._cookie is None:
                    self.authenticate()

                content = self._fetch_recording(filename)
                return DownloadResult(content=content, size_bytes=len(content), attempts=attempts)

            except PbxHttpError as exc:
                if exc.status_code == 404:
                    if attempts < MAX_DOWNLOAD_ATTEMPTS:
                        delay = BACKOFF_DELAYS_SECONDS[attempts - 1]
                        log.info(
                            "Recording %s not ready (404), retrying in %ss (attempt %s/%s)",
                            filename, delay, attempts, MAX_DOWNLOAD_ATTEMPTS,
                        )
                        self._sleep(delay)
                        continue
                    raise RecordingNotReadyError(
                        f"Recording not ready after {MAX_DOWNLOAD_ATTEMPTS} attempts. "
                        "It may be processed later."
                    ) from exc

                if exc.status_code == 401:
                    log.info("PBX session expired (401), re-authenticating")
                    self._cookie = None
                    if attempts < MAX_DOWNLOAD_ATTEMPTS:
                        continue
                    raise PbxAuthenticationError(
                        f"Authentication failed after {MAX_DOWNLOAD_ATTEMPTS} attempts"
                    ) from exc

                raise PbxHttpError(exc.status_code, f"Download failed: HTTP {exc.status_code}") from exc

            except PbxConnectionError as exc:
                if attempts < MAX_DOWNLOAD_ATTEMPTS:
                    delay = BACKOFF_DELAYS_SECONDS[attempts - 1]
                    log.warning("Download error (%s), retrying in %ss", exc, delay)
                    self._sleep(delay)
                    continue
                raise

        # Unreachable: every branch above returns, continues or raises
        raise PbxError(f"Download failed after {MAX_DOWNLOAD_ATTEMPTS} attempts")


def test_connection(config: PbxConfig, timeout_ms: int = 10000) -> ConnectionTestResult:
    return GrandstreamClient(config).test_connection(timeout_ms=timeout_ms)


def download_recording(config: PbxConfig, filename: str) -> DownloadResult:
    return GrandstreamClient(config).download_recording(filename)
