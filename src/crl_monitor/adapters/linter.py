"""
Linter adapter — runs pkilint's RFC 5280 and CA/B Forum CRL validations
against raw CRL bytes.

Adapter layer — implements the CrlLinter port using:
  - asn1crypto.crl: lenient framing, independent of the strict validator
    decode (PEM unwrapped, trailing bytes dropped), plus the issuer and
    authority key identifier that label each report
  - pkilint: the validations, composed the way its lint_crl command composes
    them for a profile and a CRL type
  - tomllib: rule filters (profile, CRL type, which findings are reported)

A rule filter is a TOML document, bundled under crl_monitor/lint_filters/ or
given as a path. Finding codes in include/exclude are shell-style patterns
and each must match at least one validation of the selected profile:

    profile = "br"                                  # "pkix" or "br" (default)
    crl_type = "arl"                                # "crl" or "arl" (default)
    include = ["cabf.arl_invalid_validity_period"]  # optional, default: all
    exclude = ["pkix.crl_number_*"]                 # optional
"""

from __future__ import annotations

import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from importlib.resources import files
from pathlib import Path
from typing import Any

import structlog
from asn1crypto import crl as asn1_crl
from pkilint import loader, pkix, validation
from pkilint.cabf import cabf_crl
from pkilint.pkix import crl, extension
from pkilint.pkix import name as pkix_name
from pkilint.validation import ValidationFindingSeverity
from railway import ErrorCode
from railway.result import Result

from crl_monitor.adapters.crl_validator import unwrap_pem
from crl_monitor.domain.models import LintReport, LintSeverity, LintViolation

log = structlog.get_logger()

CrlType = crl.CertificateRevocationListType

_FILTER_KEYS = {"profile", "crl_type", "include", "exclude"}

# pkilint DEBUG findings are diagnostics, not violations.
_SEVERITIES = {
    ValidationFindingSeverity.FATAL: LintSeverity.FATAL,
    ValidationFindingSeverity.ERROR: LintSeverity.ERROR,
    ValidationFindingSeverity.WARNING: LintSeverity.WARN,
    ValidationFindingSeverity.NOTICE: LintSeverity.INFO,
    ValidationFindingSeverity.INFO: LintSeverity.INFO,
}


class RuleFilterError(ValueError):
    """A rule filter names unknown findings or is not well formed."""


class LintProfile(Enum):
    PKIX = "pkix"
    BR = "br"


def create_crl_validator(
    profile: LintProfile = LintProfile.BR, crl_type: CrlType = CrlType.ARL
) -> validation.ValidatorContainer:
    """RFC 5280 CRL validations, plus the Baseline Requirements ones for ``br``."""
    validity_validators = []
    document_validators = []
    if profile is LintProfile.BR:
        validity_validators.append(cabf_crl.create_validity_period_validator(crl_type))
        document_validators.append(cabf_crl.CabfCrlReasonCodeAllowlistValidator(crl_type))

    return crl.create_pkix_crl_validator_container(
        [
            pkix.create_attribute_decoder(pkix_name.ATTRIBUTE_TYPE_MAPPINGS),
            pkix.create_extension_decoder(extension.EXTENSION_MAPPINGS),
        ],
        [
            crl.create_issuer_validator_container([]),
            crl.create_validity_validator_container(validity_validators),
            crl.create_extensions_validator_container([]),
            *document_validators,
        ],
    )


def finding_codes(validator: validation.Validator) -> set[str]:
    return {finding.code for finding in validator.validations}


@dataclass(frozen=True, slots=True)
class RuleFilter:
    """Which profile runs and which of its findings are reported."""

    name: str = "all"
    profile: LintProfile = LintProfile.BR
    crl_type: CrlType = CrlType.ARL
    include: tuple[str, ...] | None = None
    exclude: tuple[str, ...] = ()

    def selects(self, code: str) -> bool:
        if self.include is not None and not any(fnmatchcase(code, p) for p in self.include):
            return False
        return not any(fnmatchcase(code, p) for p in self.exclude)

    def select(self, codes: Iterable[str]) -> list[str]:
        return sorted(code for code in codes if self.selects(code))


# ─────────────────────── Rule filters ───────────────────────


def _string_list(document: Mapping[str, Any], key: str) -> tuple[str, ...] | None:
    value = document.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise RuleFilterError(f"{key!r} must be a list of finding codes")
    return tuple(value)


def _choice[E: Enum](
    document: Mapping[str, Any], key: str, by_value: dict[str, E], default: E
) -> E:
    value = document.get(key)
    if value is None:
        return default
    if not isinstance(value, str) or value.lower() not in by_value:
        raise RuleFilterError(f"{key!r} must be one of " + ", ".join(sorted(by_value)))
    return by_value[value.lower()]


def parse_rule_filter(name: str, text: str) -> RuleFilter:
    """Parse filter TOML. Raises RuleFilterError (tomllib errors are ValueErrors too)."""
    document = tomllib.loads(text)
    unknown_keys = sorted(set(document) - _FILTER_KEYS)
    if unknown_keys:
        raise RuleFilterError("unknown filter setting(s): " + ", ".join(unknown_keys))

    profile = _choice(document, "profile", {p.value: p for p in LintProfile}, LintProfile.BR)
    crl_type = _choice(document, "crl_type", {t.name.lower(): t for t in CrlType}, CrlType.ARL)
    include = _string_list(document, "include")
    exclude = _string_list(document, "exclude") or ()

    known = finding_codes(create_crl_validator(profile, crl_type))
    named = [*(include or ()), *exclude]
    unmatched = sorted({p for p in named if not any(fnmatchcase(code, p) for code in known)})
    if unmatched:
        raise RuleFilterError(
            f"no {profile.value} {crl_type.name} validation matches: " + ", ".join(unmatched)
        )

    return RuleFilter(
        name=name, profile=profile, crl_type=crl_type, include=include, exclude=exclude
    )


def _read_filter_source(name_or_path: str) -> tuple[str, str]:
    path = Path(name_or_path)
    if path.suffix == ".toml" or path.is_file():
        return path.stem, path.read_text(encoding="utf-8")
    resource = files("crl_monitor") / "lint_filters" / f"{name_or_path}.toml"
    if not resource.is_file():
        raise RuleFilterError(f"no bundled lint rule filter named {name_or_path!r}")
    return name_or_path, resource.read_text(encoding="utf-8")


def load_rule_filter(name_or_path: str) -> Result[RuleFilter]:
    """
    Load a bundled filter by name (``ca_crl``, ``all``) or a filter file by path.

    Returns Result.failure(CONFIGURATION_ERROR, ...) for missing files,
    malformed TOML, unknown settings or patterns no validation matches.
    """
    return Result.from_computation(
        lambda: parse_rule_filter(*_read_filter_source(name_or_path)),
        ErrorCode.CONFIGURATION_ERROR,
        f"Invalid lint rule filter {name_or_path!r}",
    ).peek(
        lambda rule_filter: log.info(
            "lint.filter_loaded",
            filter=rule_filter.name,
            profile=rule_filter.profile.value,
            crl_type=rule_filter.crl_type.name,
        )
    )


# ─────────────────────── Linting ───────────────────────


def lenient_decode(data: bytes) -> asn1_crl.CertificateList:
    """
    Decode a CRL without the strict checks of the validator.

    Trailing bytes after the DER structure are ignored. The fields every
    report needs are parsed eagerly so a broken structure fails here, not
    inside a validation.
    Raises ValueError (or TypeError from asn1crypto on bad tagging).
    """
    cert_list = asn1_crl.CertificateList.load(unwrap_pem(data), strict=False)
    tbs = cert_list["tbs_cert_list"]
    for field_name in ("issuer", "this_update", "next_update"):
        _ = tbs[field_name].native
    return cert_list


def _authority_key_id(cert_list: asn1_crl.CertificateList) -> str | None:
    key_id = cert_list.authority_key_identifier
    return key_id.hex() if key_id else None


def to_violations(results: Iterable[validation.ValidationResult]) -> list[LintViolation]:
    """Flatten pkilint results into violations, one per finding."""
    violations = []
    for result in results:
        for found in result.finding_descriptions:
            severity = _SEVERITIES.get(found.finding.severity)
            if severity is None:
                continue
            violations.append(
                LintViolation(
                    rule=found.finding.code,
                    severity=severity,
                    description=f"{result.validator} at {result.node.path}",
                    detail=found.message,
                )
            )
    return violations


class PkilintCrlLinter:
    """
    Run the pkilint CRL validations of a rule filter against one CRL.

    Implements the CrlLinter port. The validator container is built once;
    one instance serves a whole run.
    """

    def __init__(
        self,
        rule_filter: RuleFilter | None = None,
        threshold: LintSeverity = LintSeverity.WARN,
        validator: validation.Validator | None = None,
    ) -> None:
        self._rule_filter = rule_filter or RuleFilter()
        self._threshold = threshold
        if validator is None:
            validator = create_crl_validator(self._rule_filter.profile, self._rule_filter.crl_type)
        self._validator = validator
        self._loader = loader.RFC5280CertificateListDocumentLoader()

    @property
    def rules(self) -> list[str]:
        return self._rule_filter.select(finding_codes(self._validator))

    def lint(self, data: bytes) -> Result[LintReport]:
        """
        Lint raw CRL bytes (PEM or DER).

        Returns Result.failure(DECODE_ERROR, ...) when the CRL cannot be
        decoded for linting; otherwise a LintReport, possibly with zero findings.
        """
        return Result.from_computation(
            lambda: self._run(lenient_decode(data)),
            ErrorCode.DECODE_ERROR,
            "CRL could not be decoded for linting",
        )

    def _run(self, cert_list: asn1_crl.CertificateList) -> LintReport:
        document = self._loader.load_der_document(cert_list.dump(), "crl")
        violations = [
            violation
            for violation in to_violations(self._validator.validate(document.root))
            if self._rule_filter.selects(violation.rule)
        ]
        return LintReport(
            violations=tuple(violations),
            threshold=self._threshold,
            authority_key_id=_authority_key_id(cert_list),
            issuer=cert_list.issuer.human_friendly,
        )
