"""
Cache layout — turning feed values into safe directory and file names.

    <cache_root>/<organization of issuer>/<CN of subject>/<last URL segment>.crl

When two URLs of one CA end in the same segment, each file name gets a short
hash of its URL (``ca-1a2b3c4d.crl``) so every URL keeps its own file.

Feed data is untrusted: every path component is sanitized and URLs are
stripped of invisible control/format characters before use.
"""

from __future__ import annotations

import hashlib
import posixpath
import unicodedata
from pathlib import Path
from urllib.parse import unquote, urlsplit

from crl_monitor.domain.models import FeedRecord

_HAZARDOUS = '/\\:*?"<>|'
_HAZARD_TABLE = str.maketrans({ch: "_" for ch in _HAZARDOUS})
_QUERY_TABLE = str.maketrans({ch: "_" for ch in "?&="})

UNKNOWN_COMPONENT = "unknown"
DEFAULT_CRL_FILENAME = "default.crl"
CRL_SUFFIX = ".crl"
URL_HASH_LENGTH = 8


def sanitize(value: str) -> str:
    """Replace filesystem-hazardous characters with '_'; empty → 'unknown'."""
    cleaned = value.translate(_HAZARD_TABLE).strip()
    if cleaned in ("", ".", ".."):
        return UNKNOWN_COMPONENT
    return cleaned


def parse_dn(dn: str) -> tuple[str, str]:
    """
    Extract (CN, O) from a DN written as ``CN=x, O=y`` or ``CN=x; O=y``.

    Missing attributes come back as empty strings; the last occurrence wins.
    """
    common_name = ""
    organization = ""
    for part in dn.replace(";", ",").split(","):
        part = part.strip()
        if part.startswith("CN="):
            common_name = part[3:].strip()
        elif part.startswith("O="):
            organization = part[2:].strip()
    return common_name, organization


def clean_url(raw: str) -> str:
    """Drop Unicode control (Cc) and format (Cf) characters, trim whitespace."""
    return "".join(
        ch for ch in raw if unicodedata.category(ch) not in ("Cc", "Cf")
    ).strip()


def is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def issuer_directory(cache_root: Path, record: FeedRecord) -> Path:
    """Directory holding every CRL published for one CA record."""
    subject_cn, _ = parse_dn(record.subject)
    return cache_root / sanitize(record.organization) / sanitize(subject_cn)


def crl_filename(url: str) -> str:
    """
    File name for a CRL URL: its last path segment, made filesystem safe.

    The name always ends in ``.crl`` so the check phase picks it up.
    """
    parts = urlsplit(clean_url(url))
    segment = posixpath.basename(unquote(parts.path))
    if parts.query:
        segment = f"{segment}?{parts.query}"
    name = sanitize(segment.translate(_QUERY_TABLE))
    if name == UNKNOWN_COMPONENT and segment.strip() in ("", ".", ".."):
        return DEFAULT_CRL_FILENAME
    if not name.lower().endswith(CRL_SUFFIX):
        name += CRL_SUFFIX
    return name


def crl_destination(cache_root: Path, record: FeedRecord, url: str) -> Path:
    return issuer_directory(cache_root, record) / crl_filename(url)


def disambiguate(dest_path: Path, url: str) -> Path:
    """
    Give ``dest_path`` a name unique to ``url`` by inserting a short URL hash.

    Used when several URLs would otherwise share one cache file, e.g.
    ``http://a.example/ca.crl`` and ``http://b.example/ca.crl`` for one CA.
    """
    digest = hashlib.sha256(clean_url(url).encode("utf-8")).hexdigest()[:URL_HASH_LENGTH]
    return dest_path.with_name(f"{dest_path.stem}-{digest}{dest_path.suffix}")
