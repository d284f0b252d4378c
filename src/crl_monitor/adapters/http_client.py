"""
HTTP adapter — cache-aware CRL download via httpx.

Adapter layer — implements the CrlFetcher port.

`timeout` bounds the whole download, not just each connect or read: the body
is streamed and the download is abandoned once the deadline has passed.

Conditional GET flow for one (url, dest_path):
  1. fingerprint = quoted MD5 of the file already at dest_path ("" if none)
  2. GET url with If-None-Match: fingerprint
  3. 304 → NOT_MODIFIED, file untouched
     non-2xx → failure, file untouched
     2xx with the same content → NOT_MODIFIED, no write
     2xx with new content → temp file + os.replace (atomic), DOWNLOADED

Retry/backoff via tenacity on transient errors (network, timeout).
All failures are captured into Result failures — fetch() never raises, so one
bad URL cannot take down a batch of concurrent fetches.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import NamedTuple

import httpx
import structlog
from railway import ErrorCode, FailureDescription
from railway.result import Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from crl_monitor import __version__
from crl_monitor.domain.layout import clean_url, is_http_url
from crl_monitor.domain.models import (
    FetchOutcome,
    FetchStatus,
    content_fingerprint,
    quoted_digest,
)

log = structlog.get_logger()

_CHUNK_SIZE = 1 << 16
_USER_AGENT = f"crl-monitor/{__version__}"


def compute_fingerprint(path: Path) -> str:
    """
    ETag-shaped fingerprint of the file at `path`, or "" when it does not exist.

    Other I/O errors propagate.
    """
    hasher = hashlib.md5(usedforsecurity=False)
    try:
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                hasher.update(chunk)
    except FileNotFoundError:
        return ""
    return quoted_digest(hasher)


def write_atomically(dest_path: Path, body: bytes) -> int:
    """
    Replace `dest_path` with `body` via a temp file in the same directory.

    Parent directories are created as needed; concurrent creation is fine.
    Raises OSError on a short write or any I/O problem, leaving the previous
    file in place.
    """
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=dest_path.parent, prefix=".", suffix=".part")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as out:
            written = out.write(body)
            out.flush()
            os.fsync(out.fileno())
        if written != len(body):
            raise OSError(f"short write: {written} of {len(body)} bytes")
        os.replace(tmp_path, dest_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return written


class DownloadDeadlineExceeded(httpx.TimeoutException):
    """The download as a whole ran past its deadline."""


class _Download(NamedTuple):
    status_code: int
    body: bytes


def _classify_transport_error(err: FailureDescription) -> FailureDescription:
    if isinstance(err.exception, httpx.TimeoutException):
        return FailureDescription(ErrorCode.TIMEOUT_ERROR, err.message, err.exception)
    return err


class HttpCrlFetcher:
    """
    Conditionally download CRLs into the cache tree.

    Implements the CrlFetcher port. Safe to share between worker threads:
    each fetch opens its own client and touches only its own dest_path.
    """

    def __init__(
        self,
        cache_root: Path,
        timeout: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache_root = cache_root.resolve()
        self._timeout = timeout
        self._clock = clock

    def fetch(self, url: str, dest_path: Path) -> Result[FetchOutcome]:
        """
        Fetch `url` into `dest_path` unless the cached copy is current.

        Failures: VALIDATION_ERROR (bad URL, path outside the cache, empty
        body), EXTERNAL_SERVICE_ERROR (non-2xx, transport), TIMEOUT_ERROR,
        STORAGE_ERROR (local read/write).
        """
        url = clean_url(url)
        if not is_http_url(url):
            return Result.failure(ErrorCode.VALIDATION_ERROR, f"Not an http(s) URL: {url!r}")
        if not dest_path.resolve().is_relative_to(self._cache_root):
            return Result.failure(
                ErrorCode.VALIDATION_ERROR,
                f"Destination {dest_path} is outside the cache root {self._cache_root}",
            )

        return (
            Result.from_computation(
                lambda: compute_fingerprint(dest_path),
                ErrorCode.STORAGE_ERROR,
                f"Failed to fingerprint {dest_path}",
            )
            .flat_map(lambda fingerprint: self._request(url, dest_path, fingerprint))
            .peek_failure(
                lambda err: log.warning(
                    "fetch.failed", url=url, code=err.code.value, error=err.cause
                )
            )
        )

    def _request(self, url: str, dest_path: Path, fingerprint: str) -> Result[FetchOutcome]:
        return (
            Result.from_computation(
                lambda: self._do_get(url, fingerprint),
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"Download failed for {url}",
            )
            .map_failure(_classify_transport_error)
            .flat_map(
                lambda download: self._handle_response(url, dest_path, fingerprint, download)
            )
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _do_get(self, url: str, fingerprint: str) -> _Download:
        """GET with tenacity retries; each attempt gets its own deadline."""
        headers = {"User-Agent": _USER_AGENT}
        if fingerprint:
            headers["If-None-Match"] = fingerprint
        deadline = self._clock() + self._timeout
        with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
            with client.stream("GET", url, headers=headers) as response:
                if not response.is_success:
                    return _Download(response.status_code, b"")
                body = bytearray()
                for chunk in response.iter_bytes(_CHUNK_SIZE):
                    body += chunk
                    if self._clock() > deadline:
                        raise DownloadDeadlineExceeded(
                            f"Download of {url} exceeded {self._timeout}s",
                            request=response.request,
                        )
                return _Download(response.status_code, bytes(body))

    def _handle_response(
        self,
        url: str,
        dest_path: Path,
        fingerprint: str,
        download: _Download,
    ) -> Result[FetchOutcome]:
        if download.status_code == httpx.codes.NOT_MODIFIED:
            log.debug("fetch.not_modified", url=url, source="server")
            return Result.success(
                FetchOutcome(url, dest_path, FetchStatus.NOT_MODIFIED, 0, fingerprint)
            )

        if not httpx.codes.is_success(download.status_code):
            return Result.failure(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"Non-2xx for {url}: {download.status_code}",
            )

        body = download.body
        if not body:
            return Result.failure(
                ErrorCode.VALIDATION_ERROR,
                f"Empty response body for {url} ({download.status_code})",
            )

        new_fingerprint = content_fingerprint(body)
        if new_fingerprint == fingerprint:
            log.debug("fetch.not_modified", url=url, source="content")
            return Result.success(
                FetchOutcome(url, dest_path, FetchStatus.NOT_MODIFIED, 0, fingerprint)
            )

        return Result.from_computation(
            lambda: write_atomically(dest_path, body),
            ErrorCode.STORAGE_ERROR,
            f"Write error for {dest_path}",
        ).map(
            lambda written: FetchOutcome(
                url, dest_path, FetchStatus.DOWNLOADED, written, new_fingerprint
            )
        ).peek(
            lambda outcome: log.info(
                "fetch.downloaded",
                url=url,
                path=str(dest_path),
                size_bytes=outcome.bytes_written,
            )
        )
