"""
CRL validator adapter — strict decode, issuer match, signature and freshness.

Adapter layer — implements the CrlValidator port using:
  - asn1crypto.pem: PEM envelope detection/stripping
  - cryptography (PyCA): strict DER CRL decoding and signature verification

Per file state machine (terminal in every branch, no retries):

  Unread → DECODE_FAILED
         → Decoded → ISSUER_UNKNOWN          (signature never checked)
                   → SIGNATURE_INVALID
                   → VERIFIED

Freshness (CURRENT / EXPIRED / UNKNOWN) is informational and attached to every
decoded outcome. EXPIRED means now is strictly after nextUpdate.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import structlog
from asn1crypto import pem
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.x509.oid import ObjectIdentifier, SignatureAlgorithmOID

from crl_monitor.domain.models import (
    Freshness,
    IntermediateCertificate,
    ParsedCRL,
    RevokedEntry,
    TrustStore,
    ValidationOutcome,
    ValidationStatus,
)

log = structlog.get_logger()

PEM_CRL_BLOCK = "X509 CRL"

_SIGNATURE_ALGORITHM_NAMES = {
    oid: name
    for name, oid in vars(SignatureAlgorithmOID).items()
    if isinstance(oid, ObjectIdentifier) and not name.startswith("_")
}


def unwrap_pem(data: bytes) -> bytes:
    """
    Strip a PEM envelope if present; DER input is returned unchanged.

    Raises ValueError for malformed armor or a block that is not a CRL.
    """
    if not pem.detect(data):
        return data
    block_type, _headers, der = pem.unarmor(data)
    if block_type != PEM_CRL_BLOCK:
        raise ValueError(f"unexpected PEM block {block_type!r}, expected {PEM_CRL_BLOCK!r}")
    return der


def signature_algorithm_name(oid: ObjectIdentifier) -> str:
    return _SIGNATURE_ALGORITHM_NAMES.get(oid, oid.dotted_string)


def decode_crl(data: bytes) -> ParsedCRL:
    """Strictly decode CRL bytes (PEM or DER). Raises ValueError."""
    der = unwrap_pem(data)
    crl = x509.load_der_x509_crl(der)
    revoked = tuple(
        RevokedEntry(serial_number=entry.serial_number, revocation_date=entry.revocation_date_utc)
        for entry in crl
    )
    return ParsedCRL(
        issuer=crl.issuer.rfc4514_string(),
        signature_algorithm=signature_algorithm_name(crl.signature_algorithm_oid),
        this_update=crl.last_update_utc,
        next_update=crl.next_update_utc,
        revoked=revoked,
        der=der,
        crl=crl,
    )


def evaluate_freshness(next_update: datetime | None, now: datetime) -> Freshness:
    """EXPIRED only when `now` is strictly after nextUpdate."""
    if next_update is None:
        return Freshness.UNKNOWN
    if now > next_update:
        return Freshness.EXPIRED
    return Freshness.CURRENT


def verify_signature(
    parsed: ParsedCRL, issuer_cert: IntermediateCertificate
) -> tuple[bool, str]:
    """Check the CRL signature against one issuer key; returns (valid, message)."""
    try:
        valid = parsed.crl.is_signature_valid(issuer_cert.public_key)
    except (TypeError, ValueError, UnsupportedAlgorithm) as e:
        return False, f"signature could not be checked: {e}"
    if not valid:
        return False, "signature does not match issuer public key"
    return True, "signature verified"


def validate_crl(
    data: bytes,
    trust_store: TrustStore,
    *,
    path: Path | None = None,
    now: datetime | None = None,
) -> tuple[ParsedCRL | None, ValidationOutcome]:
    """
    Validate one CRL against the trust store.

    Returns the parsed CRL (None when decoding failed) and the terminal
    outcome. Never raises for bad input.
    """
    if not data:
        return None, ValidationOutcome(
            ValidationStatus.DECODE_FAILED, path, "empty file", corrupt=True
        )

    try:
        parsed = decode_crl(data)
    except ValueError as e:
        return None, ValidationOutcome(ValidationStatus.DECODE_FAILED, path, f"parse error: {e}")

    freshness = evaluate_freshness(parsed.next_update, now or datetime.now(UTC))

    if parsed.issuer not in trust_store:
        return parsed, ValidationOutcome(
            ValidationStatus.ISSUER_UNKNOWN,
            path,
            f"issuer not in trust store: {parsed.issuer}",
            freshness,
        )

    valid, message = verify_signature(parsed, trust_store[parsed.issuer])
    status = ValidationStatus.VERIFIED if valid else ValidationStatus.SIGNATURE_INVALID
    return parsed, ValidationOutcome(status, path, message, freshness)


class TrustStoreCrlValidator:
    """
    Validate CRLs against a fixed trust store.

    Implements the CrlValidator port. `clock` is injectable for tests.
    """

    def __init__(
        self,
        trust_store: TrustStore,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._trust_store = trust_store
        self._clock = clock

    def validate(
        self, data: bytes, path: Path | None = None
    ) -> tuple[ParsedCRL | None, ValidationOutcome]:
        parsed, outcome = validate_crl(data, self._trust_store, path=path, now=self._clock())
        log.debug(
            "validate.outcome",
            path=str(path) if path else None,
            status=outcome.status.value,
            freshness=outcome.freshness.value if outcome.freshness else None,
        )
        return parsed, outcome
