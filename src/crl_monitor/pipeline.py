"""
Pipeline — orchestrates the update (fetch) and check (validate + lint) phases.

Domain layer — all I/O against the network, the trust store and the rule
engine goes through ports (Protocol interfaces); the only direct I/O here is
walking and reading the local cache tree.

    trust_store_loader.load()                 (fatal on failure, check only)
      → feed_reader.read()                    (fatal on failure)
        → plan_fetch_tasks()                  (one task per distinct URL)
          → fetcher.fetch() × N               (bounded thread pool)
      → walk cache_root/**/*.crl (sorted)
          → validator.validate() → linter.lint()
      → RunStatistics

Per-file and per-URL problems are logged and counted, never fatal.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path

import structlog
from railway.result import Result

from crl_monitor.domain.layout import crl_destination, disambiguate
from crl_monitor.domain.models import (
    CachedFile,
    FeedRecord,
    FetchTask,
    LintReport,
    RunStatistics,
    TrustStore,
    ValidationOutcome,
    ValidationStatus,
)
from crl_monitor.domain.ports import (
    CrlFetcher,
    CrlLinter,
    CrlValidator,
    FeedReader,
    TrustStoreLoader,
)

log = structlog.get_logger()

DEFAULT_FETCH_WORKERS = 16
CRL_GLOB = "*.crl"


# ─────────────────────── Update phase ───────────────────────


def plan_fetch_tasks(records: Iterable[FeedRecord], cache_root: Path) -> list[FetchTask]:
    """
    One FetchTask per distinct URL; the first record listing a URL owns it.

    Every task gets its own dest_path: URLs that would share a file are all
    renamed with a hash of their URL, independent of feed order.
    """
    tasks: list[FetchTask] = []
    seen: set[str] = set()
    duplicates = 0
    for record in records:
        for url in record.crl_urls:
            if url in seen:
                duplicates += 1
                continue
            seen.add(url)
            tasks.append(FetchTask(url=url, dest_path=crl_destination(cache_root, record, url)))
    if duplicates:
        log.debug("update.duplicate_urls", count=duplicates)

    claims = Counter(task.dest_path for task in tasks)
    shared = {path for path, count in claims.items() if count > 1}
    if not shared:
        return tasks
    log.debug("update.shared_filenames", paths=len(shared))
    return [
        FetchTask(url=task.url, dest_path=disambiguate(task.dest_path, task.url))
        if task.dest_path in shared
        else task
        for task in tasks
    ]


def _collect(future: Future, task: FetchTask, stats: RunStatistics) -> None:
    try:
        result = future.result()
    except Exception as e:
        # The fetcher contract is to never raise; count it and keep going.
        log.error("fetch.crashed", url=task.url, error=str(e))
        stats.record_fetch_failure()
        return
    if result.is_success():
        stats.record_fetch(result.value())
    else:
        stats.record_fetch_failure()


def fetch_all(
    tasks: list[FetchTask],
    fetcher: CrlFetcher,
    stats: RunStatistics,
    max_workers: int = DEFAULT_FETCH_WORKERS,
) -> None:
    """Run every task on a bounded pool; returns once all have completed."""
    if not tasks:
        return
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="crl-fetch") as pool:
        futures = {pool.submit(fetcher.fetch, task.url, task.dest_path): task for task in tasks}
        for future in as_completed(futures):
            _collect(future, futures[future], stats)


def run_update(
    feed_reader: FeedReader,
    fetcher: CrlFetcher,
    cache_root: Path,
    stats: RunStatistics,
    max_workers: int = DEFAULT_FETCH_WORKERS,
) -> Result[int]:
    """
    Read the feed and refresh the cache.

    Returns Result[int] with the number of URLs attempted, or the feed
    failure (the only fatal condition of this phase).
    """

    def _fetch(records: list[FeedRecord]) -> int:
        tasks = plan_fetch_tasks(records, cache_root)
        log.info("update.started", records=len(records), urls=len(tasks), workers=max_workers)
        fetch_all(tasks, fetcher, stats, max_workers)
        log.info(
            "update.completed",
            downloaded=stats.downloaded,
            not_modified=stats.not_modified,
            failures=stats.fetch_failures,
        )
        return len(tasks)

    return feed_reader.read().map(_fetch)


# ─────────────────────── Check phase ───────────────────────


def _log_lint_report(path: Path, report: LintReport, show_lint_errors: bool) -> None:
    failures = report.failures
    if not failures:
        return
    log.warning(
        "lint.failures",
        path=str(path),
        count=len(failures),
        authority_key_id=report.authority_key_id,
        issuer=report.issuer,
    )
    emit = log.warning if show_lint_errors else log.debug
    for violation in failures:
        emit(
            "lint.violation",
            path=str(path),
            rule=violation.rule,
            severity=violation.severity.value,
            description=violation.description,
            detail=violation.detail,
        )


def lint_file(
    path: Path,
    data: bytes,
    linter: CrlLinter,
    stats: RunStatistics,
    show_lint_errors: bool = False,
) -> None:
    result = linter.lint(data)
    if result.is_failure():
        stats.record_lint_decode_failure()
        log.warning("lint.decode_failed", path=str(path), error=result.error().cause)
        return
    report = result.value()
    stats.record_lint(report)
    _log_lint_report(path, report, show_lint_errors)


def _log_outcome(outcome: ValidationOutcome) -> None:
    path = str(outcome.path)
    freshness = outcome.freshness.value if outcome.freshness else None
    match outcome.status:
        case ValidationStatus.VERIFIED:
            log.debug("check.crl", path=path, status="verified", freshness=freshness)
        case ValidationStatus.ISSUER_UNKNOWN:
            log.warning("check.issuer_unknown", path=path, message=outcome.message)
        case ValidationStatus.SIGNATURE_INVALID:
            log.warning("check.signature_invalid", path=path, message=outcome.message)
        case ValidationStatus.DECODE_FAILED:
            log.warning("check.decode_failed", path=path, message=outcome.message)


def check_file(
    path: Path,
    validator: CrlValidator,
    linter: CrlLinter,
    stats: RunStatistics,
    show_lint_errors: bool = False,
) -> ValidationOutcome | None:
    """
    Validate and lint one cached file.

    Empty files are deleted. Returns the validation outcome, or None when
    the file could not be read.
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        log.warning("check.read_failed", path=str(path), error=str(e))
        return None

    cached = CachedFile.from_content(path, data)
    stats.record_file(cached.size)
    log.debug(
        "check.file", path=str(path), size_bytes=cached.size, fingerprint=cached.fingerprint
    )
    parsed, outcome = validator.validate(data, path)
    stats.record_validation(parsed, outcome)
    _log_outcome(outcome)

    if outcome.corrupt:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("check.remove_failed", path=str(path), error=str(e))
        else:
            stats.record_empty_removed()
            log.info("check.empty_removed", path=str(path))
        return outcome

    if outcome.status is not ValidationStatus.ISSUER_UNKNOWN:
        lint_file(path, data, linter, stats, show_lint_errors)
    return outcome


def iter_cached_crls(cache_root: Path) -> list[Path]:
    if not cache_root.is_dir():
        log.warning("check.cache_missing", cache_root=str(cache_root))
        return []
    return sorted(p for p in cache_root.rglob(CRL_GLOB) if p.is_file())


def run_check(
    cache_root: Path,
    validator: CrlValidator,
    linter: CrlLinter,
    stats: RunStatistics,
    show_lint_errors: bool = False,
) -> int:
    """Walk the cache tree in sorted order; returns the number of files checked."""
    paths = iter_cached_crls(cache_root)
    log.info("check.started", cache_root=str(cache_root), files=len(paths))
    for path in paths:
        check_file(path, validator, linter, stats, show_lint_errors)
    log.info(
        "check.completed",
        files=stats.files_scanned,
        verified=stats.verified,
        revoked_entries=stats.revoked_entries,
    )
    return len(paths)


# ─────────────────────── Full run ───────────────────────


def run_pipeline(
    trust_store_loader: TrustStoreLoader,
    feed_reader: FeedReader,
    fetcher: CrlFetcher,
    validator_factory: Callable[[TrustStore], CrlValidator],
    linter: CrlLinter,
    cache_root: Path,
    *,
    update: bool = True,
    check: bool = True,
    max_workers: int = DEFAULT_FETCH_WORKERS,
    show_lint_errors: bool = False,
    stats: RunStatistics | None = None,
) -> Result[RunStatistics]:
    """
    Execute one monitoring run.

    The trust store is loaded before anything touches the network, so a bad
    bundle fails fast. Returns the run statistics, or the first fatal
    failure (trust store, feed).
    """
    run_stats = stats if stats is not None else RunStatistics()

    def _update() -> Result[int]:
        if not update:
            return Result.success(0)
        return run_update(feed_reader, fetcher, cache_root, run_stats, max_workers)

    def _check(validator: CrlValidator) -> RunStatistics:
        run_check(cache_root, validator, linter, run_stats, show_lint_errors)
        return run_stats

    if not check:
        return _update().map(lambda _: run_stats)

    return (
        trust_store_loader.load()
        .map(validator_factory)
        .flat_map(lambda validator: _update().map(lambda _: _check(validator)))
    )
