"""
Ports — Protocol-based interfaces for infrastructure adapters.

The pipeline depends on these contracts only; concrete adapters satisfy them
structurally (no inheritance):

  Domain ← Ports (protocols) ← Adapters (implementations)

Adapters never raise across a port: failures travel as Result values.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from railway.result import Result

from crl_monitor.domain.models import (
    FeedRecord,
    FetchOutcome,
    LintReport,
    ParsedCRL,
    TrustStore,
    ValidationOutcome,
)


@runtime_checkable
class TrustStoreLoader(Protocol):
    """
    Port: load the trusted intermediate certificates.

    Any undecodable certificate fails the whole load; a partial trust store
    would silently mark valid CRLs as unverifiable.
    """

    def load(self) -> Result[TrustStore]: ...


@runtime_checkable
class FeedReader(Protocol):
    """Port: read the CA metadata feed into FeedRecords."""

    def read(self) -> Result[list[FeedRecord]]: ...


@runtime_checkable
class CrlFetcher(Protocol):
    """
    Port: conditionally download one CRL into the cache.

    Must be safe to call concurrently for distinct destination paths.
    """

    def fetch(self, url: str, dest_path: Path) -> Result[FetchOutcome]: ...


@runtime_checkable
class CrlValidator(Protocol):
    """Port: decode a cached CRL, match its issuer, verify it, judge freshness."""

    def validate(
        self, data: bytes, path: Path | None = None
    ) -> tuple[ParsedCRL | None, ValidationOutcome]: ...


@runtime_checkable
class CrlLinter(Protocol):
    """
    Port: run compliance rules against raw CRL bytes.

    A Failure means the rule engine could not decode the CRL, which is
    different from a Success carrying zero findings.
    """

    def lint(self, data: bytes) -> Result[LintReport]: ...
