"""
Shared test fixtures for the crl-monitor test suite.

Provides freshly generated CAs, a trust store built from them and a temporary
cache root. structlog is reset after every test so a test that configures
logging cannot leak its configuration into log capture elsewhere.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from crl_monitor.adapters.trust_store import build_trust_store
from crl_monitor.domain.models import TrustStore
from tests.factories import IssuingCA, make_ca, pem_bundle


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


@pytest.fixture()
def ca() -> IssuingCA:
    """The trusted intermediate CA."""
    return make_ca("Example Intermediate CA", "Example Trust Inc.")


@pytest.fixture()
def stranger_ca() -> IssuingCA:
    """A CA that is NOT in the trust store."""
    return make_ca("Stranger Issuing CA", "Elsewhere Ltd")


@pytest.fixture()
def trust_store(ca: IssuingCA) -> TrustStore:
    return build_trust_store(pem_bundle(ca))


@pytest.fixture()
def cache_root(tmp_path: Path) -> Path:
    """Return an (existing) empty CRL cache directory."""
    root = tmp_path / "crls"
    root.mkdir()
    return root
