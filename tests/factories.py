"""
Test PKI material generated at test time with cryptography builders.

No fixture files: every key, intermediate certificate and CRL is built fresh,
so tests control exactly the field under test (issuer, dates, extensions).
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from asn1crypto import crl as asn1_crl
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from crl_monitor.adapters.feed_reader import REQUIRED_FIELDS

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


@dataclass(frozen=True)
class IssuingCA:
    """An intermediate CA able to sign CRLs."""

    name: x509.Name
    key: ec.EllipticCurvePrivateKey
    certificate: x509.Certificate

    @property
    def subject(self) -> str:
        return self.name.rfc4514_string()

    @property
    def pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)


def make_name(common_name: str, organization: str = "Example Trust Inc.") -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def make_ca(
    common_name: str = "Example Intermediate CA",
    organization: str = "Example Trust Inc.",
    key: ec.EllipticCurvePrivateKey | None = None,
    serial: int = 1000,
) -> IssuingCA:
    """Self-signed CA certificate; the trust store only cares about subject and key."""
    key = key or ec.generate_private_key(ec.SECP256R1())
    name = make_name(common_name, organization)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(NOW - timedelta(days=365))
        .not_valid_after(NOW + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(key, hashes.SHA256())
    )
    return IssuingCA(name=name, key=key, certificate=certificate)


def make_crl(
    ca: IssuingCA,
    *,
    revoked: int = 0,
    this_update: datetime = NOW - timedelta(days=1),
    next_update: datetime = NOW + timedelta(days=6),
    crl_number: int | None = 1,
    authority_key_identifier: bool = True,
    signing_key: ec.EllipticCurvePrivateKey | None = None,
) -> bytes:
    """DER CRL issued under `ca`'s name, signed by `signing_key` (default: ca.key)."""
    builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(ca.name)
        .last_update(this_update)
        .next_update(next_update)
    )
    for serial in range(1, revoked + 1):
        builder = builder.add_revoked_certificate(
            x509.RevokedCertificateBuilder()
            .serial_number(serial)
            .revocation_date(this_update - timedelta(hours=serial))
            .build()
        )
    if crl_number is not None:
        builder = builder.add_extension(x509.CRLNumber(crl_number), critical=False)
    if authority_key_identifier:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.key.public_key()),
            critical=False,
        )
    crl = builder.sign(signing_key or ca.key, hashes.SHA256())
    return crl.public_bytes(serialization.Encoding.DER)


def to_pem(der: bytes) -> bytes:
    return x509.load_der_x509_crl(der).public_bytes(serialization.Encoding.PEM)


def pem_bundle(*cas: IssuingCA, preamble: bytes = b"") -> bytes:
    return preamble + b"".join(ca.pem for ca in cas)


def mutate_crl(der: bytes, **fields: Any) -> bytes:
    """
    Re-encode a CRL with TBSCertList fields replaced (signature left stale).

    Used to build CRLs the cryptography builder refuses to produce.
    A value of None removes an optional field.
    """
    cert_list = asn1_crl.CertificateList.load(der)
    tbs = cert_list["tbs_cert_list"]
    for name, value in fields.items():
        tbs[name] = value
    return cert_list.dump(force=True)


def feed_csv(*rows: dict[str, str]) -> str:
    """A CCADB style CSV report with the given rows (missing columns left empty)."""
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=("CA Owner", *REQUIRED_FIELDS), extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return out.getvalue()


def feed_row(ca: IssuingCA, full: str = "", partitioned: tuple[str, ...] = ()) -> dict[str, str]:
    """The report row of an intermediate CA whose issuer is the CA's own organization."""
    organization = ca.name.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value
    return {
        "CA Owner": str(organization),
        "Issuer": f"CN=Example Root CA, O={organization}",
        "Subject": ca.subject,
        "Full CRL Issued By This CA": full,
        "JSON Array of Partitioned CRLs": json.dumps(list(partitioned)) if partitioned else "",
    }
