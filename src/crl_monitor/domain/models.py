"""
Domain models — value objects for feed records, cached files, parsed CRLs,
validation outcomes, lint findings and run statistics.

Everything except RunStatistics is a frozen dataclass. RunStatistics is the
single mutable accumulator of a run; every mutation goes through a lock so the
fetch phase can update it from worker threads.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes


# ─────────────────────── Trust Store ───────────────────────


@dataclass(frozen=True, slots=True)
class IntermediateCertificate:
    """A trusted intermediate CA certificate, keyed by its subject DN."""

    subject: str
    der: bytes = field(repr=False)
    certificate: x509.Certificate = field(repr=False, compare=False)

    @property
    def public_key(self) -> CertificatePublicKeyTypes:
        return self.certificate.public_key()


class TrustStore(Mapping[str, IntermediateCertificate]):
    """
    Read-only mapping of RFC 4514 subject DN → IntermediateCertificate.

    Built once by the trust store loader, which guarantees one entry per DN.
    """

    __slots__ = ("_by_subject",)

    def __init__(self, certificates: Mapping[str, IntermediateCertificate]) -> None:
        self._by_subject = dict(certificates)

    def lookup(self, subject: str) -> IntermediateCertificate | None:
        return self._by_subject.get(subject)

    def __getitem__(self, subject: str) -> IntermediateCertificate:
        return self._by_subject[subject]

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_subject)

    def __len__(self) -> int:
        return len(self._by_subject)

    def __repr__(self) -> str:
        return f"TrustStore({len(self)} certificates)"


# ─────────────────────── Feed & Fetch ───────────────────────


@dataclass(frozen=True, slots=True)
class FeedRecord:
    """One CA row of the CCADB report with the CRL URLs it publishes."""

    issuer: str
    subject: str
    organization: str
    full_crl_url: str | None = None
    partitioned_crl_urls: tuple[str, ...] = ()

    @property
    def crl_urls(self) -> tuple[str, ...]:
        """Full CRL first, then partitions, in feed order."""
        if self.full_crl_url:
            return (self.full_crl_url, *self.partitioned_crl_urls)
        return self.partitioned_crl_urls


@dataclass(frozen=True, slots=True)
class FetchTask:
    url: str
    dest_path: Path


class FetchStatus(Enum):
    DOWNLOADED = "downloaded"
    NOT_MODIFIED = "not_modified"


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    """Result of one successful conditional fetch."""

    url: str
    dest_path: Path
    status: FetchStatus
    bytes_written: int = 0
    fingerprint: str = ""


@dataclass(frozen=True, slots=True)
class CachedFile:
    """
    A file in the local CRL cache.

    The fingerprint is the quoted hex MD5 of the content, shaped like an
    HTTP ETag so it can be sent as an If-None-Match precondition.
    It is recomputed on each run and never stored on its own.
    """

    path: Path
    fingerprint: str
    size: int

    @classmethod
    def from_content(cls, path: Path, data: bytes) -> CachedFile:
        return cls(path=path, fingerprint=content_fingerprint(data), size=len(data))


def quoted_digest(hasher: Any) -> str:
    return f'"{hasher.hexdigest()}"'


def content_fingerprint(data: bytes) -> str:
    """ETag-shaped fingerprint of in-memory content."""
    return quoted_digest(hashlib.md5(data, usedforsecurity=False))


# ─────────────────────── Parsed CRL & Validation ───────────────────────


@dataclass(frozen=True, slots=True)
class RevokedEntry:
    serial_number: int
    revocation_date: datetime


@dataclass(frozen=True, slots=True)
class ParsedCRL:
    """
    A strictly decoded CRL.

    `der` holds the raw signed bytes; `crl` is the decoded object the
    validator uses for signature verification.
    """

    issuer: str
    signature_algorithm: str
    this_update: datetime
    next_update: datetime | None
    revoked: tuple[RevokedEntry, ...]
    der: bytes = field(repr=False)
    crl: x509.CertificateRevocationList = field(repr=False, compare=False)

    @property
    def revoked_count(self) -> int:
        return len(self.revoked)


class ValidationStatus(Enum):
    VERIFIED = "verified"
    ISSUER_UNKNOWN = "issuer_unknown"
    SIGNATURE_INVALID = "signature_invalid"
    DECODE_FAILED = "decode_failed"


class Freshness(Enum):
    CURRENT = "current"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    """
    Terminal state of validating one cached file.

    `corrupt` is set only for empty input; the caller deletes such files.
    `freshness` is None when the CRL could not be decoded.
    """

    status: ValidationStatus
    path: Path | None
    message: str
    freshness: Freshness | None = None
    corrupt: bool = False

    @property
    def is_verified(self) -> bool:
        return self.status is ValidationStatus.VERIFIED


# ─────────────────────── Lint ───────────────────────


class LintSeverity(Enum):
    """Finding severity, ordered INFO < WARN < ERROR < FATAL."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, LintSeverity):
            return NotImplemented
        return self.rank >= other.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, LintSeverity):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: str) -> LintSeverity:
        """Case-insensitive lookup by value or name ("warn", "WARN", "Warn")."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown lint severity {value!r}; expected one of "
                + ", ".join(s.value for s in cls)
            ) from None


_SEVERITY_RANK = {
    LintSeverity.INFO: 0,
    LintSeverity.WARN: 1,
    LintSeverity.ERROR: 2,
    LintSeverity.FATAL: 3,
}


@dataclass(frozen=True, slots=True)
class LintViolation:
    rule: str
    severity: LintSeverity
    description: str
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class LintReport:
    """
    All findings of the rule engine for one CRL.

    `failures` are the findings at or above the configured threshold.
    `authority_key_id` and `issuer` identify the CRL for triage.
    """

    violations: tuple[LintViolation, ...] = ()
    threshold: LintSeverity = LintSeverity.WARN
    authority_key_id: str | None = None
    issuer: str = ""

    @property
    def failures(self) -> tuple[LintViolation, ...]:
        return tuple(v for v in self.violations if v.severity >= self.threshold)

    @property
    def is_clean(self) -> bool:
        return not self.failures


# ─────────────────────── Run Statistics ───────────────────────


@dataclass
class RunStatistics:
    """
    Run-wide totals.

    The fetch phase records from worker threads; the check phase records
    from a single thread. Both go through the same lock.
    """

    downloaded: int = 0
    not_modified: int = 0
    fetch_failures: int = 0
    bytes_downloaded: int = 0

    files_scanned: int = 0
    bytes_scanned: int = 0
    revoked_entries: int = 0
    verified: int = 0
    issuer_unknown: int = 0
    signature_failures: int = 0
    decode_failures: int = 0
    expired_crls: int = 0
    empty_files_removed: int = 0

    lint_failed_files: int = 0
    lint_violations: int = 0
    lint_decode_failures: int = 0

    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    # -- fetch phase ---------------------------------------------------------

    def record_fetch(self, outcome: FetchOutcome) -> None:
        with self._lock:
            if outcome.status is FetchStatus.DOWNLOADED:
                self.downloaded += 1
                self.bytes_downloaded += outcome.bytes_written
            else:
                self.not_modified += 1

    def record_fetch_failure(self) -> None:
        with self._lock:
            self.fetch_failures += 1

    # -- check phase ---------------------------------------------------------

    def record_file(self, size: int) -> None:
        with self._lock:
            self.files_scanned += 1
            self.bytes_scanned += size

    def record_empty_removed(self) -> None:
        with self._lock:
            self.empty_files_removed += 1

    def record_validation(self, parsed: ParsedCRL | None, outcome: ValidationOutcome) -> None:
        """Tally one validation; revocations count whatever the verdict."""
        with self._lock:
            if parsed is not None:
                self.revoked_entries += parsed.revoked_count
            if outcome.freshness is Freshness.EXPIRED:
                self.expired_crls += 1
            match outcome.status:
                case ValidationStatus.VERIFIED:
                    self.verified += 1
                case ValidationStatus.ISSUER_UNKNOWN:
                    self.issuer_unknown += 1
                case ValidationStatus.SIGNATURE_INVALID:
                    self.signature_failures += 1
                case ValidationStatus.DECODE_FAILED:
                    self.decode_failures += 1

    def record_lint(self, report: LintReport) -> None:
        failures = len(report.failures)
        with self._lock:
            self.lint_violations += failures
            if failures:
                self.lint_failed_files += 1

    def record_lint_decode_failure(self) -> None:
        with self._lock:
            self.lint_decode_failures += 1

    def snapshot(self) -> dict[str, Any]:
        """Plain dict copy of every counter, taken under the lock."""
        with self._lock:
            return {
                name: getattr(self, name)
                for name in self.__dataclass_fields__
                if not name.startswith("_")
            }
