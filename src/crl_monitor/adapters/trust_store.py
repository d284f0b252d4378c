"""
Trust store adapter — loads trusted intermediate certificates from a PEM bundle.

Adapter layer — implements the TrustStoreLoader port using:
  - asn1crypto.pem: PEM block iteration (tolerates text between blocks,
    exposes the block type so non-certificate blocks can be skipped)
  - cryptography (PyCA): DER certificate decoding and public keys

Loading is all-or-nothing: one undecodable certificate fails the load with
CONFIGURATION_ERROR. Subject DNs must be unambiguous:
  - byte-identical duplicates are skipped
  - same DN with the same public key (cross-signed intermediates) collapses
    to the first certificate seen
  - same DN with a different public key fails the load
"""

from __future__ import annotations

from pathlib import Path

import structlog
from asn1crypto import pem
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from railway import ErrorCode
from railway.result import Result

from crl_monitor.domain.models import IntermediateCertificate, TrustStore

log = structlog.get_logger()

_CERTIFICATE_BLOCK = "CERTIFICATE"


class TrustStoreError(ValueError):
    """The bundle cannot produce an unambiguous, complete trust store."""


def _spki(cert: x509.Certificate) -> bytes:
    return cert.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _decode_certificate(der: bytes, index: int) -> IntermediateCertificate:
    try:
        cert = x509.load_der_x509_certificate(der)
        subject = cert.subject.rfc4514_string()
    except ValueError as e:
        raise TrustStoreError(f"certificate #{index} could not be decoded: {e}") from e
    return IntermediateCertificate(subject=subject, der=der, certificate=cert)


def build_trust_store(pem_data: bytes) -> TrustStore:
    """
    Build a TrustStore from PEM bundle bytes. Raises TrustStoreError.

    Pure; the loader wraps it into a Result.
    """
    if not pem.detect(pem_data):
        raise TrustStoreError("bundle does not contain PEM data")

    by_subject: dict[str, IntermediateCertificate] = {}
    collapsed = 0
    index = 0
    for block_type, _headers, der in pem.unarmor(pem_data, multiple=True):
        if block_type != _CERTIFICATE_BLOCK:
            log.debug("trust_store.block_skipped", block_type=block_type)
            continue
        index += 1
        entry = _decode_certificate(der, index)
        existing = by_subject.get(entry.subject)
        if existing is None:
            by_subject[entry.subject] = entry
            continue
        if existing.der == entry.der:
            continue
        if _spki(existing.certificate) != _spki(entry.certificate):
            raise TrustStoreError(
                f"ambiguous issuer: {entry.subject!r} appears with different public keys"
            )
        collapsed += 1

    if not by_subject:
        raise TrustStoreError("bundle contains no certificates")

    if collapsed:
        log.debug("trust_store.cross_signed_collapsed", count=collapsed)
    return TrustStore(by_subject)


class PemTrustStoreLoader:
    """
    Load a TrustStore from a local PEM bundle.

    Implements the TrustStoreLoader port. No network access.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> Result[TrustStore]:
        """
        Read and decode the bundle.

        Returns Result[TrustStore] on success, or
        Result.failure(CONFIGURATION_ERROR, ...) on any read or decode problem.
        """
        return (
            Result.from_computation(
                self._path.read_bytes,
                ErrorCode.CONFIGURATION_ERROR,
                f"Failed to read trust store {self._path}",
            )
            .flat_map(
                lambda data: Result.from_computation(
                    lambda: build_trust_store(data),
                    ErrorCode.CONFIGURATION_ERROR,
                    f"Failed to load trust store {self._path}",
                )
            )
            .peek(
                lambda store: log.info(
                    "trust_store.loaded", path=str(self._path), certificates=len(store)
                )
            )
        )
