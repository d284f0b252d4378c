"""
Reporter — renders RunStatistics for humans and for the log stream.
"""

from __future__ import annotations

import structlog

from crl_monitor.domain.models import RunStatistics

log = structlog.get_logger()

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(size: int) -> str:
    """
    Human readable byte count, base 1024.

        format_bytes(512)        -> "512 B"
        format_bytes(1536)       -> "1.50 KB"
        format_bytes(5 * 2**30)  -> "5.00 GB"
    """
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in _UNITS[1:]:
        value /= 1024
        if value < 1024 or unit == _UNITS[-1]:
            return f"{value:.2f} {unit}"
    raise AssertionError("unreachable")  # pragma: no cover


def summary_lines(stats: RunStatistics) -> list[str]:
    counts = stats.snapshot()
    return [
        f"CRLs downloaded: {counts['downloaded']} "
        f"({format_bytes(counts['bytes_downloaded'])}), "
        f"unchanged: {counts['not_modified']}, fetch failures: {counts['fetch_failures']}",
        f"CRL files scanned: {counts['files_scanned']} "
        f"({format_bytes(counts['bytes_scanned'])})",
        f"Revoked certificates: {counts['revoked_entries']}",
        f"Verified: {counts['verified']}, issuer unknown: {counts['issuer_unknown']}, "
        f"bad signature: {counts['signature_failures']}, "
        f"undecodable: {counts['decode_failures']}",
        f"Expired CRLs: {counts['expired_crls']}",
        f"Lint: {counts['lint_violations']} violation(s) in "
        f"{counts['lint_failed_files']} file(s), "
        f"{counts['lint_decode_failures']} file(s) could not be linted",
        f"Empty files removed: {counts['empty_files_removed']}",
    ]


def emit_summary(stats: RunStatistics) -> None:
    """Log every counter as one `report.summary` event."""
    counts = stats.snapshot()
    log.info(
        "report.summary",
        **counts,
        bytes_downloaded_human=format_bytes(counts["bytes_downloaded"]),
        bytes_scanned_human=format_bytes(counts["bytes_scanned"]),
    )
