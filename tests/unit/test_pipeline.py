"""
Unit tests for the pipeline — update and check phases over mock ports.

Uses MagicMock ports (fake adapters) to test orchestration in isolation;
the check phase reads real files from a temporary cache tree.

Test categories:
  - Planning: one fetch task per distinct URL
  - Fetching: outcome counting, crashed fetches, empty plans
  - Checking: deletion of empty files, lint gating, log levels
  - Full run: fatal trust store / feed failures, update-only, check-only
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from railway import ErrorCode, Result, ResultAssertions
from structlog.testing import capture_logs

from crl_monitor.domain.models import (
    CachedFile,
    FeedRecord,
    FetchOutcome,
    FetchStatus,
    FetchTask,
    Freshness,
    LintReport,
    LintSeverity,
    LintViolation,
    RunStatistics,
    TrustStore,
    ValidationOutcome,
    ValidationStatus,
)
from crl_monitor.pipeline import (
    check_file,
    fetch_all,
    iter_cached_crls,
    plan_fetch_tasks,
    run_check,
    run_pipeline,
    run_update,
)

# ─────────────────────── Mock Port Factories ───────────────────────


def _record(subject_cn: str, *urls: str, org: str = "Example Trust Inc.") -> FeedRecord:
    return FeedRecord(
        issuer=f"CN=Root, O={org}",
        subject=f"CN={subject_cn}, O={org}",
        organization=org,
        full_crl_url=urls[0] if urls else None,
        partitioned_crl_urls=tuple(urls[1:]),
    )


def _make_feed_reader(result: Result[list[FeedRecord]]) -> MagicMock:
    mock = MagicMock()
    mock.read.return_value = result
    return mock


def _make_fetcher(status: FetchStatus = FetchStatus.DOWNLOADED) -> MagicMock:
    mock = MagicMock()
    mock.fetch.side_effect = lambda url, dest: Result.success(
        FetchOutcome(url, dest, status, 100)
    )
    return mock


def _make_trust_store_loader(result: Result[TrustStore]) -> MagicMock:
    mock = MagicMock()
    mock.load.return_value = result
    return mock


def _make_validator(status: ValidationStatus, corrupt: bool = False) -> MagicMock:
    mock = MagicMock()
    mock.validate.side_effect = lambda data, path: (
        None,
        ValidationOutcome(status, path, status.value, Freshness.CURRENT, corrupt=corrupt),
    )
    return mock


def _make_linter(result: Result[LintReport] | None = None) -> MagicMock:
    mock = MagicMock()
    mock.lint.return_value = result if result is not None else Result.success(LintReport())
    return mock


def _failing_report() -> LintReport:
    return LintReport(
        violations=(
            LintViolation("pkix.crl_number_missing", LintSeverity.ERROR, "no number"),
            LintViolation("pkix.ldap_uri_not_validated", LintSeverity.INFO, "LDAP URI"),
        ),
        authority_key_id="ab12",
        issuer="Common Name: Example Intermediate CA",
    )


def _write(root: Path, relative: str, data: bytes = b"\x30\x03\x02\x01\x01") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


# ═══════════════════════════════════════════════════════════════════════
# Update phase
# ═══════════════════════════════════════════════════════════════════════


class TestPlanFetchTasks:
    """Verify URL de-duplication and destination layout."""

    def test_shared_url_is_fetched_once(self, cache_root: Path) -> None:
        """
        GIVEN two CA rows that both list the same CRL URL
        WHEN tasks are planned
        THEN the URL is fetched once, into the first row's directory.
        """
        shared = "http://crl.example.com/shared.crl"
        records = [
            _record("Sub CA 1", shared, "http://crl.example.com/p1.crl"),
            _record("Sub CA 2", shared),
        ]

        with capture_logs() as logs:
            tasks = plan_fetch_tasks(records, cache_root)

        assert [t.url for t in tasks] == [shared, "http://crl.example.com/p1.crl"]
        assert tasks[0].dest_path == cache_root / "Example Trust Inc." / "Sub CA 1" / "shared.crl"
        assert [e["count"] for e in logs if e["event"] == "update.duplicate_urls"] == [1]

    def test_records_without_urls_plan_nothing(self, cache_root: Path) -> None:
        assert plan_fetch_tasks([_record("Sub CA")], cache_root) == []

    def test_urls_sharing_a_file_name_get_distinct_paths(self, cache_root: Path) -> None:
        """
        GIVEN a CA whose full CRL and partition URLs end in the same segment
        WHEN tasks are planned
        THEN each URL gets its own cache file, named with a hash of its URL.
        """
        first, second = "http://a.example/ca.crl", "http://b.example/ca.crl"

        tasks = plan_fetch_tasks([_record("Sub CA", first, second)], cache_root)

        paths = [t.dest_path for t in tasks]
        assert len(set(paths)) == 2
        assert all(p.parent == cache_root / "Example Trust Inc." / "Sub CA" for p in paths)
        assert all(p.name.startswith("ca-") and p.suffix == ".crl" for p in paths)

    def test_shared_file_names_do_not_depend_on_feed_order(self, cache_root: Path) -> None:
        first, second = "http://a.example/ca.crl", "http://b.example/ca.crl"

        forward = plan_fetch_tasks([_record("Sub CA", first, second)], cache_root)
        backward = plan_fetch_tasks([_record("Sub CA", second, first)], cache_root)

        assert {t.url: t.dest_path for t in forward} == {t.url: t.dest_path for t in backward}

    def test_unique_names_are_left_alone(self, cache_root: Path) -> None:
        tasks = plan_fetch_tasks(
            [_record("Sub CA", "http://a.example/full.crl", "http://a.example/p1.crl")],
            cache_root,
        )
        assert [t.dest_path.name for t in tasks] == ["full.crl", "p1.crl"]


class TestFetchAll:
    """Verify concurrent fetching and outcome counting."""

    def test_counts_each_outcome(self, cache_root: Path) -> None:
        outcomes = {
            "http://x/new.crl": FetchStatus.DOWNLOADED,
            "http://x/same.crl": FetchStatus.NOT_MODIFIED,
        }

        def fetch(url: str, dest: Path) -> Result[FetchOutcome]:
            if url in outcomes:
                return Result.success(FetchOutcome(url, dest, outcomes[url], 10))
            return Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, "404")

        fetcher = MagicMock()
        fetcher.fetch.side_effect = fetch
        tasks = [
            FetchTask(url, cache_root / f"{n}.crl")
            for n, url in enumerate([*outcomes, "http://x/gone.crl"])
        ]
        stats = RunStatistics()

        fetch_all(tasks, fetcher, stats, max_workers=4)

        assert (stats.downloaded, stats.not_modified, stats.fetch_failures) == (1, 1, 1)
        assert fetcher.fetch.call_count == 3

    def test_crashing_fetch_is_counted_not_raised(self, cache_root: Path) -> None:
        fetcher = MagicMock()
        fetcher.fetch.side_effect = RuntimeError("bug")
        stats = RunStatistics()

        with capture_logs() as logs:
            fetch_all([FetchTask("http://x/a.crl", cache_root / "a.crl")], fetcher, stats)

        assert stats.fetch_failures == 1
        assert any(e["event"] == "fetch.crashed" for e in logs)

    def test_empty_plan_does_nothing(self) -> None:
        fetcher = _make_fetcher()
        fetch_all([], fetcher, RunStatistics())
        fetcher.fetch.assert_not_called()


class TestRunUpdate:
    def test_returns_number_of_urls(self, cache_root: Path) -> None:
        reader = _make_feed_reader(
            Result.success([_record("A", "http://x/a.crl", "http://x/b.crl")])
        )
        stats = RunStatistics()

        result = run_update(reader, _make_fetcher(), cache_root, stats, max_workers=2)

        assert ResultAssertions.assert_success(result) == 2
        assert stats.downloaded == 2
        assert stats.bytes_downloaded == 200

    def test_feed_failure_is_returned_and_nothing_fetched(self, cache_root: Path) -> None:
        reader = _make_feed_reader(Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, "503"))
        fetcher = _make_fetcher()

        result = run_update(reader, fetcher, cache_root, RunStatistics())

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        fetcher.fetch.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════
# Check phase
# ═══════════════════════════════════════════════════════════════════════


class TestIterCachedCrls:
    def test_sorted_recursive_crl_files_only(self, cache_root: Path) -> None:
        _write(cache_root, "b/z.crl")
        _write(cache_root, "a/y.crl")
        _write(cache_root, "a/notes.txt")
        (cache_root / "c" / "dir.crl").mkdir(parents=True)

        paths = iter_cached_crls(cache_root)

        assert [p.relative_to(cache_root).as_posix() for p in paths] == ["a/y.crl", "b/z.crl"]

    def test_missing_cache_is_empty(self, tmp_path: Path) -> None:
        with capture_logs() as logs:
            assert iter_cached_crls(tmp_path / "missing") == []
        assert logs[0]["event"] == "check.cache_missing"


class TestCheckFile:
    """
    GIVEN one cached file
    WHEN check_file is called
    THEN it is validated, counted, and linted unless the issuer is unknown.
    """

    def test_verified_file_is_counted_and_linted(self, cache_root: Path) -> None:
        path = _write(cache_root, "a/ca.crl")
        linter = _make_linter()
        stats = RunStatistics()

        outcome = check_file(path, _make_validator(ValidationStatus.VERIFIED), linter, stats)

        assert outcome is not None
        assert outcome.is_verified
        assert (stats.files_scanned, stats.bytes_scanned, stats.verified) == (1, 5, 1)
        linter.lint.assert_called_once_with(path.read_bytes())

    def test_file_size_and_fingerprint_are_logged(self, cache_root: Path) -> None:
        """
        GIVEN a cached file
        WHEN checked
        THEN its size and ETag-shaped fingerprint are logged before validation.
        """
        data = b"\x30\x03\x02\x01\x01"
        path = _write(cache_root, "a/ca.crl", data)

        with capture_logs() as logs:
            check_file(
                path, _make_validator(ValidationStatus.VERIFIED), _make_linter(), RunStatistics()
            )

        entry = next(e for e in logs if e["event"] == "check.file")
        assert entry["size_bytes"] == len(data)
        assert entry["fingerprint"] == CachedFile.from_content(path, data).fingerprint

    def test_unknown_issuer_is_not_linted(self, cache_root: Path) -> None:
        path = _write(cache_root, "a/ca.crl")
        linter = _make_linter()
        stats = RunStatistics()

        check_file(path, _make_validator(ValidationStatus.ISSUER_UNKNOWN), linter, stats)

        linter.lint.assert_not_called()
        assert stats.issuer_unknown == 1

    @pytest.mark.parametrize(
        "status", [ValidationStatus.SIGNATURE_INVALID, ValidationStatus.DECODE_FAILED]
    )
    def test_rejected_files_are_still_linted(
        self, cache_root: Path, status: ValidationStatus
    ) -> None:
        path = _write(cache_root, "a/ca.crl")
        linter = _make_linter()

        check_file(path, _make_validator(status), linter, RunStatistics())

        linter.lint.assert_called_once()

    def test_empty_file_is_deleted(self, cache_root: Path) -> None:
        """
        GIVEN an empty cached file
        WHEN checked
        THEN it is removed from the cache, counted, and not linted.
        """
        path = _write(cache_root, "a/empty.crl", b"")
        linter = _make_linter()
        stats = RunStatistics()
        validator = _make_validator(ValidationStatus.DECODE_FAILED, corrupt=True)

        with capture_logs() as logs:
            check_file(path, validator, linter, stats)

        assert not path.exists()
        assert stats.empty_files_removed == 1
        assert stats.decode_failures == 1
        linter.lint.assert_not_called()
        assert any(e["event"] == "check.empty_removed" for e in logs)

    def test_unreadable_file_is_skipped(self, cache_root: Path) -> None:
        directory = cache_root / "not-a-file.crl"
        directory.mkdir()
        validator = _make_validator(ValidationStatus.VERIFIED)
        stats = RunStatistics()

        assert check_file(directory, validator, _make_linter(), stats) is None
        validator.validate.assert_not_called()
        assert stats.files_scanned == 0

    def test_lint_failures_are_counted(self, cache_root: Path) -> None:
        path = _write(cache_root, "a/ca.crl")
        linter = _make_linter(Result.success(_failing_report()))
        stats = RunStatistics()

        with capture_logs() as logs:
            check_file(path, _make_validator(ValidationStatus.VERIFIED), linter, stats)

        assert (stats.lint_failed_files, stats.lint_violations) == (1, 1)
        summary = next(e for e in logs if e["event"] == "lint.failures")
        assert summary["authority_key_id"] == "ab12"
        assert summary["count"] == 1

    @pytest.mark.parametrize(("show", "level"), [(True, "warning"), (False, "debug")])
    def test_violation_log_level(
        self, cache_root: Path, show: bool, level: str
    ) -> None:
        path = _write(cache_root, "a/ca.crl")
        linter = _make_linter(Result.success(_failing_report()))

        with capture_logs() as logs:
            check_file(
                path,
                _make_validator(ValidationStatus.VERIFIED),
                linter,
                RunStatistics(),
                show_lint_errors=show,
            )

        violations = [e for e in logs if e["event"] == "lint.violation"]
        assert [e["rule"] for e in violations] == ["pkix.crl_number_missing"]
        assert violations[0]["log_level"] == level

    def test_lint_decode_failure_is_counted(self, cache_root: Path) -> None:
        path = _write(cache_root, "a/ca.crl")
        linter = _make_linter(Result.failure(ErrorCode.DECODE_ERROR, "bad DER"))
        stats = RunStatistics()

        check_file(path, _make_validator(ValidationStatus.DECODE_FAILED), linter, stats)

        assert stats.lint_decode_failures == 1
        assert stats.lint_failed_files == 0


class TestRunCheck:
    def test_checks_every_cached_file(self, cache_root: Path) -> None:
        for name in ("a/1.crl", "b/2.crl", "b/3.crl"):
            _write(cache_root, name)
        validator = _make_validator(ValidationStatus.VERIFIED)
        stats = RunStatistics()

        checked = run_check(cache_root, validator, _make_linter(), stats)

        assert checked == 3
        assert stats.verified == 3
        called = [c.args[1].name for c in validator.validate.call_args_list]
        assert called == ["1.crl", "2.crl", "3.crl"]


# ═══════════════════════════════════════════════════════════════════════
# Full run
# ═══════════════════════════════════════════════════════════════════════


class TestRunPipeline:
    """
    GIVEN mock ports for every collaborator
    WHEN run_pipeline is called
    THEN phases run in order and only trust store or feed failures are fatal.
    """

    @pytest.fixture()
    def store(self) -> TrustStore:
        return TrustStore({})

    def _run(
        self,
        cache_root: Path,
        ports: dict[str, MagicMock] | None = None,
        **options: Any,
    ) -> tuple[Result[RunStatistics], dict[str, MagicMock]]:
        fetcher = MagicMock()
        fetcher.fetch.side_effect = lambda url, dest: Result.success(
            FetchOutcome(url, _write(dest.parent, dest.name), FetchStatus.DOWNLOADED, 5)
        )
        all_ports = {
            "trust_store_loader": _make_trust_store_loader(Result.success(TrustStore({}))),
            "feed_reader": _make_feed_reader(Result.success([_record("A", "http://x/a.crl")])),
            "fetcher": fetcher,
            "validator_factory": MagicMock(
                return_value=_make_validator(ValidationStatus.VERIFIED)
            ),
            "linter": _make_linter(),
            **(ports or {}),
        }
        return run_pipeline(cache_root=cache_root, **all_ports, **options), all_ports

    def test_full_run_updates_then_checks(self, cache_root: Path) -> None:
        result, ports = self._run(cache_root, max_workers=2)

        stats = ResultAssertions.assert_success(result)
        assert stats.downloaded == 1
        assert stats.files_scanned == 1
        assert stats.verified == 1
        ports["validator_factory"].assert_called_once()

    def test_trust_store_failure_is_fatal_before_network(self, cache_root: Path) -> None:
        loader = _make_trust_store_loader(
            Result.failure(ErrorCode.CONFIGURATION_ERROR, "bad bundle")
        )

        result, ports = self._run(cache_root, {"trust_store_loader": loader})

        ResultAssertions.assert_failure(result, ErrorCode.CONFIGURATION_ERROR)
        ports["feed_reader"].read.assert_not_called()

    def test_feed_failure_is_fatal_and_skips_check(self, cache_root: Path) -> None:
        _write(cache_root, "old/ca.crl")
        reader = _make_feed_reader(Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, "503"))

        result, ports = self._run(cache_root, {"feed_reader": reader})

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        ports["linter"].lint.assert_not_called()

    def test_update_only_never_loads_trust_store(self, cache_root: Path) -> None:
        result, ports = self._run(cache_root, check=False)

        stats = ResultAssertions.assert_success(result)
        assert stats.downloaded == 1
        assert stats.files_scanned == 0
        ports["trust_store_loader"].load.assert_not_called()

    def test_check_only_never_reads_feed(self, cache_root: Path, store: TrustStore) -> None:
        _write(cache_root, "old/ca.crl")
        loader = _make_trust_store_loader(Result.success(store))

        result, ports = self._run(cache_root, {"trust_store_loader": loader}, update=False)

        stats = ResultAssertions.assert_success(result)
        assert stats.files_scanned == 1
        ports["feed_reader"].read.assert_not_called()
        ports["validator_factory"].assert_called_once_with(store)

    def test_given_stats_are_filled_in(self, cache_root: Path) -> None:
        stats = RunStatistics()
        result, _ = self._run(cache_root, stats=stats)
        assert ResultAssertions.assert_success(result) is stats
