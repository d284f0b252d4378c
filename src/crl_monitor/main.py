"""
Application entry point — parses the command line, wires dependencies and runs
the monitor once (default) or on a schedule (--watch).

Composition root: creates concrete adapters and injects them into the
pipeline. This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Usage::

    crl-monitor                          # update the cache, then check it
    crl-monitor --no-update --check      # check the existing cache only
    crl-monitor --rule-filter all --show-lint-errors
    crl-monitor --watch                  # run now, then on SCHEDULER__CRON

Exit status is 1 only for fatal problems: invalid configuration, an unusable
trust store, an unreachable or malformed feed, an invalid lint rule filter.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError
from railway.result import Result

from crl_monitor import __version__
from crl_monitor.adapters.crl_validator import TrustStoreCrlValidator
from crl_monitor.adapters.feed_reader import HttpFeedReader
from crl_monitor.adapters.http_client import HttpCrlFetcher
from crl_monitor.adapters.linter import PkilintCrlLinter, RuleFilter, load_rule_filter
from crl_monitor.adapters.trust_store import PemTrustStoreLoader
from crl_monitor.config import AppSettings
from crl_monitor.domain.models import RunStatistics
from crl_monitor.pipeline import run_pipeline
from crl_monitor.report import emit_summary, summary_lines
from crl_monitor.scheduler import create_scheduler


def configure_structlog(log_level: str = "INFO") -> None:
    """Configure structlog for human-readable console output at `log_level`."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crl-monitor",
        description="Fetch, verify and lint the CRLs of the CCADB intermediate CAs.",
    )
    parser.add_argument(
        "--update",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Refresh the local CRL cache from the CCADB feed (default: on).",
    )
    parser.add_argument(
        "--check",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Verify and lint every cached CRL (default: on).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--show-lint-errors",
        action="store_true",
        default=None,
        help="Log every lint violation, not only the per-file count.",
    )
    parser.add_argument("--trust-store", type=Path, metavar="PATH", help="PEM bundle.")
    parser.add_argument("--cache-root", type=Path, metavar="PATH", help="CRL cache directory.")
    parser.add_argument(
        "--rule-filter",
        metavar="NAME",
        help="Bundled lint rule filter name (ca_crl, all) or path to a TOML filter.",
    )
    parser.add_argument("--workers", type=int, metavar="N", help="Concurrent downloads.")
    parser.add_argument("--timeout", type=float, metavar="S", help="Per-download timeout.")
    parser.add_argument(
        "--watch",
        action="store_true",
        default=False,
        help="Run now, then again on the configured cron schedule.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


_OVERRIDES = {
    "update": "run_update",
    "check": "run_check",
    "show_lint_errors": "show_lint_errors",
    "trust_store": "trust_store_path",
    "cache_root": "cache_root",
    "rule_filter": "lint_rule_filter",
    "workers": "fetch_workers",
    "timeout": "fetch_timeout",
}


def _settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map the flags the user actually gave onto AppSettings fields."""
    overrides = {
        field: getattr(args, option)
        for option, field in _OVERRIDES.items()
        if getattr(args, option) is not None
    }
    if args.debug:
        overrides["log_level"] = "DEBUG"
    return overrides


type _Adapters = tuple[
    PemTrustStoreLoader,
    HttpFeedReader,
    HttpCrlFetcher,
    PkilintCrlLinter,
]


def _create_adapters(settings: AppSettings, rule_filter: RuleFilter) -> _Adapters:
    """Instantiate all concrete adapters from application settings."""
    trust_store_loader = PemTrustStoreLoader(settings.trust_store_path)
    feed_reader = HttpFeedReader(url=settings.feed.url, timeout=settings.feed.timeout)
    fetcher = HttpCrlFetcher(cache_root=settings.cache_root, timeout=settings.fetch_timeout)
    linter = PkilintCrlLinter(
        rule_filter=rule_filter,
        threshold=settings.lint_severity_threshold,
    )
    return trust_store_loader, feed_reader, fetcher, linter


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit status."""
    args = _build_parser().parse_args(argv)

    try:
        settings = AppSettings(**_settings_overrides(args))
    except ValidationError as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        return 1

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        update=settings.run_update,
        check=settings.run_check,
        cache_root=str(settings.cache_root),
        watch=args.watch,
    )

    rule_filter_result = load_rule_filter(settings.lint_rule_filter)
    if rule_filter_result.is_failure():
        log.error("app.fatal_error", failure=str(rule_filter_result.error()))
        return 1

    trust_store_loader, feed_reader, fetcher, linter = _create_adapters(
        settings, rule_filter_result.value()
    )

    pipeline_fn = partial(
        run_pipeline,
        trust_store_loader=trust_store_loader,
        feed_reader=feed_reader,
        fetcher=fetcher,
        validator_factory=TrustStoreCrlValidator,
        linter=linter,
        cache_root=settings.cache_root,
        update=settings.run_update,
        check=settings.run_check,
        max_workers=settings.fetch_workers,
        show_lint_errors=settings.show_lint_errors,
    )

    if args.watch:
        return _watch(pipeline_fn, settings.scheduler.cron)

    result = pipeline_fn()
    if result.is_failure():
        log.error("app.fatal_error", failure=str(result.error()))
        return 1

    stats = result.value()
    emit_summary(stats)
    for line in summary_lines(stats):
        print(line)  # noqa: T201
    return 0


def _watch(pipeline_fn: Callable[[], Result[RunStatistics]], cron: str) -> int:
    log = structlog.get_logger()
    try:
        scheduler = create_scheduler(pipeline_fn=pipeline_fn, cron=cron, run_on_startup=True)
        log.info("app.scheduler_starting", cron=cron)
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    return 0


if __name__ == "__main__":
    sys.exit(main())
