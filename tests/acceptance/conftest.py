"""
Acceptance test fixtures — a small CA ecosystem behind the fake distribution point.

Reuses FakeCrlServer from the integration fixtures. CRL dates are relative to
the real clock because the command line validates against it.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from tests.factories import IssuingCA, feed_csv, feed_row, make_ca, make_crl, pem_bundle
from tests.integration.conftest import FEED_URL, FakeCrlServer, crl_server  # noqa: F401

LONG_LIVED_URL = "http://crl.example.com/example/full.crl"
SECOND_URL = "http://crl.second.example.org/second.crl"
STRANGER_URL = "http://crl.elsewhere.example.net/stranger.crl"
FORGED_URL = "http://crl.second.example.org/partition-1.crl"
GONE_URL = "http://crl.second.example.org/partition-2.crl"


@dataclass(frozen=True)
class Ecosystem:
    trust_store_path: Path
    cache_root: Path
    server: FakeCrlServer

    def argv(self, *extra: str) -> list[str]:
        return [
            "--trust-store",
            str(self.trust_store_path),
            "--cache-root",
            str(self.cache_root),
            *extra,
        ]


@pytest.fixture(autouse=True)
def _quiet_structlog() -> Iterator[None]:
    """main() must not install the cached console configuration under test."""
    with patch("crl_monitor.main.configure_structlog"):
        yield


@pytest.fixture()
def ecosystem(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    crl_server: FakeCrlServer,
    ca: IssuingCA,
    stranger_ca: IssuingCA,
) -> Ecosystem:
    """
    Two trusted intermediates and one stranger, five CRL URLs:

      full.crl          trusted, 5 revoked, valid 400 days (CA CRL lint finding)
      second.crl        trusted, 0 revoked
      stranger.crl      issuer not in the trust store, 12 revoked
      partition-1.crl   names the second CA, signed by another key, 1 revoked
      partition-2.crl   listed in the feed, not served (404)
    """
    now = datetime.now(UTC).replace(microsecond=0)
    recent = now - timedelta(hours=1)
    week = now + timedelta(days=7)
    second = make_ca("Second Intermediate CA", "Second Trust Ltd")

    crl_server.serve_feed(
        feed_csv(
            feed_row(ca, LONG_LIVED_URL),
            feed_row(second, SECOND_URL, (FORGED_URL, GONE_URL)),
            feed_row(stranger_ca, STRANGER_URL),
        )
    )
    crl_server.publish(
        LONG_LIVED_URL,
        make_crl(ca, revoked=5, this_update=recent, next_update=now + timedelta(days=400)),
    )
    crl_server.publish(SECOND_URL, make_crl(second, this_update=recent, next_update=week))
    crl_server.publish(
        STRANGER_URL, make_crl(stranger_ca, revoked=12, this_update=recent, next_update=week)
    )
    crl_server.publish(
        FORGED_URL,
        make_crl(
            second,
            revoked=1,
            this_update=recent,
            next_update=week,
            signing_key=ec.generate_private_key(ec.SECP256R1()),
        ),
    )
    crl_server.withdraw(GONE_URL)
    monkeypatch.setenv("FEED__URL", FEED_URL)
    for name in ("RUN_UPDATE", "RUN_CHECK", "LINT_RULE_FILTER", "LINT_SEVERITY_THRESHOLD"):
        monkeypatch.delenv(name, raising=False)

    trust_store_path = tmp_path / "intermediates.pem"
    trust_store_path.write_bytes(pem_bundle(ca, second))
    return Ecosystem(trust_store_path, tmp_path / "crls", crl_server)
