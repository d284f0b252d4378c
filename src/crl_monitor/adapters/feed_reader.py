"""
Feed adapter — reads the CCADB intermediate CA report (CSV) into FeedRecords.

Adapter layer — implements the FeedReader port using httpx for the download
(tenacity retry on transient network errors) and the csv module for parsing.

Required columns: Issuer, Subject, Full CRL Issued By This CA,
JSON Array of Partitioned CRLs. A missing column is a CONFIGURATION_ERROR
(fatal). Everything below the header is per-row: malformed rows are logged
and skipped, never fatal.
"""

from __future__ import annotations

import csv
import io
import json

import httpx
import structlog
from railway import ErrorCode
from railway.result import Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from crl_monitor.domain.layout import clean_url, is_http_url, parse_dn
from crl_monitor.domain.models import FeedRecord

log = structlog.get_logger()

FIELD_ISSUER = "Issuer"
FIELD_SUBJECT = "Subject"
FIELD_FULL_CRL = "Full CRL Issued By This CA"
FIELD_PARTITIONED = "JSON Array of Partitioned CRLs"
REQUIRED_FIELDS = (FIELD_ISSUER, FIELD_SUBJECT, FIELD_FULL_CRL, FIELD_PARTITIONED)


# ─────────────────────── Partitioned CRL column ───────────────────────


def _json_string_array(text: str) -> list[str] | None:
    """Return the list if `text` is a JSON array of strings, else None."""
    try:
        value = json.loads(text)
    except ValueError:
        return None
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    return None


def _bracketed_list(text: str) -> list[str]:
    """Split ``[a, b, "c"]`` style lists that are not valid JSON."""
    if text.startswith("["):
        text = text[1:]
    if text.endswith("]"):
        text = text[:-1]
    return [part.strip().strip("\"'") for part in text.split(",")]


def parse_partitioned_urls(raw: str) -> Result[tuple[str, ...]]:
    """
    Parse the partitioned-CRL column.

    Accepts a JSON array of strings or a bracketed, unquoted, comma separated
    list. ``""`` and ``[]`` mean nothing to fetch. Non-empty input that yields
    no usable http(s) URL is a VALIDATION_ERROR.
    """
    text = raw.strip()
    if text in ("", "[]"):
        return Result.success(())

    candidates = _json_string_array(text)
    if candidates is not None and not candidates:
        return Result.success(())
    if candidates is None:
        candidates = _bracketed_list(text)

    urls = tuple(url for url in (clean_url(c) for c in candidates) if is_http_url(url))
    if not urls:
        return Result.failure(ErrorCode.VALIDATION_ERROR, f"No URLs found in {raw!r}")
    return Result.success(urls)


# ─────────────────────── CSV parsing ───────────────────────


def _column_index(header: list[str]) -> Result[dict[str, int]]:
    index = {name.strip(): position for position, name in enumerate(header)}
    missing = [f for f in REQUIRED_FIELDS if f not in index]
    if missing:
        return Result.failure(
            ErrorCode.CONFIGURATION_ERROR,
            "Missing required field(s) in feed: " + ", ".join(missing),
        )
    return Result.success(index)


def _record_from_row(row: list[str], index: dict[str, int], line: int) -> FeedRecord | None:
    if len(row) <= max(index[f] for f in REQUIRED_FIELDS):
        log.warning("feed.row_short", line=line, columns=len(row))
        return None

    issuer = row[index[FIELD_ISSUER]].strip()
    subject = row[index[FIELD_SUBJECT]].strip()
    full_crl = clean_url(row[index[FIELD_FULL_CRL]])
    _, organization = parse_dn(issuer)

    if full_crl and not is_http_url(full_crl):
        log.warning("feed.full_crl_invalid", line=line, issuer=issuer, url=full_crl)
        full_crl = ""

    partitioned = parse_partitioned_urls(row[index[FIELD_PARTITIONED]]).peek_failure(
        lambda err: log.warning(
            "feed.partitioned_invalid", line=line, issuer=issuer, error=err.message
        )
    ).get_or_else(())

    record = FeedRecord(
        issuer=issuer,
        subject=subject,
        organization=organization,
        full_crl_url=full_crl or None,
        partitioned_crl_urls=partitioned,
    )
    if not record.crl_urls:
        return None
    return record


def parse_feed(text: str) -> Result[list[FeedRecord]]:
    """
    Parse CSV feed text into FeedRecords (rows without any CRL URL are dropped).

    Returns CONFIGURATION_ERROR when the header is missing or incomplete.
    """
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader, None)
    except csv.Error as e:
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, "Unreadable feed header", e)
    if not header:
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, "Feed is empty")

    def _rows(index: dict[str, int]) -> list[FeedRecord]:
        records: list[FeedRecord] = []
        skipped = 0
        while True:
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                skipped += 1
                log.warning("feed.row_malformed", line=reader.line_num, error=str(e))
                continue
            if not row:
                continue
            record = _record_from_row(row, index, reader.line_num)
            if record is None:
                skipped += 1
                continue
            records.append(record)
        log.info("feed.parsed", records=len(records), skipped=skipped)
        return records

    return _column_index(header).map(_rows)


# ─────────────────────── HTTP adapter ───────────────────────


class HttpFeedReader:
    """
    Download and parse the CCADB CSV report.

    Implements the FeedReader port.
    Uses tenacity retry on transient network errors only.
    """

    def __init__(self, url: str, timeout: float = 120) -> None:
        self._url = url
        self._timeout = timeout

    def read(self) -> Result[list[FeedRecord]]:
        """
        Fetch the report and parse it.

        Returns Result.failure(EXTERNAL_SERVICE_ERROR, ...) when the download
        fails and CONFIGURATION_ERROR when the schema is wrong.
        """
        return Result.from_computation(
            self._do_download,
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            f"Feed download failed: {self._url}",
        ).flat_map(parse_feed)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=30),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _do_download(self) -> str:
        """GET with tenacity retries; the caller wraps it in from_computation."""
        with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
            response = client.get(self._url)
            response.raise_for_status()
            log.info("feed.downloaded", url=self._url, size_bytes=len(response.content))
            return response.text
