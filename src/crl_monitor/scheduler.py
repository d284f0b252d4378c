"""
Watch mode: repeat the monitor run on a cron schedule.

APScheduler 3.x BlockingScheduler with a single job. Runs never overlap
(max_instances=1) and runs missed while one was still going collapse into one
(coalesce). Each run goes through a LoggingExecutionContext; a failed or
crashed run is logged and the schedule carries on.

SIGINT/SIGTERM handlers are installed before the startup run. Once the loop
is running they stop the scheduler, which makes BlockingScheduler.start()
return to the caller; during the startup run they raise KeyboardInterrupt.
"""

from __future__ import annotations

import signal
from collections.abc import Callable

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from railway import LoggingExecutionContext
from railway.result import Result

from crl_monitor.domain.models import RunStatistics
from crl_monitor.report import emit_summary

log = structlog.get_logger()

JOB_ID = "crl_monitor_run"


class MonitorJob:
    """One scheduled run: execute, summarize, log the outcome."""

    def __init__(self, pipeline_fn: Callable[[], Result[RunStatistics]]) -> None:
        self._pipeline_fn = pipeline_fn
        self._ctx = LoggingExecutionContext(operation="CrlMonitorRun")
        self.runs = 0

    def __call__(self) -> None:
        self.runs += 1
        result = self._ctx.execute(self._pipeline_fn)
        if result.is_failure():
            log.error("scheduler.job_failed", run=self.runs, failure=result.error().cause)
            return
        stats = result.value()
        emit_summary(stats)
        log.info(
            "scheduler.job_completed",
            run=self.runs,
            files_scanned=stats.files_scanned,
            downloaded=stats.downloaded,
        )


def create_scheduler(
    pipeline_fn: Callable[[], Result[RunStatistics]],
    cron: str = "0 */6 * * *",
    run_on_startup: bool = True,
) -> BlockingScheduler:
    """
    Build the watch mode scheduler; the caller starts it.

    ``pipeline_fn`` must start every run from fresh statistics. ``cron`` is a
    standard 5-field crontab line. With ``run_on_startup`` the first run
    happens here, before the schedule takes over.
    """
    job = MonitorJob(pipeline_fn)
    scheduler = BlockingScheduler()
    scheduler.add_job(
        job,
        trigger=CronTrigger.from_crontab(cron),
        id=JOB_ID,
        name="CRL monitor run",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    _stop_on_signals(scheduler)

    if run_on_startup:
        log.info("scheduler.startup_run", cron=cron)
        job()

    return scheduler


def _stop_on_signals(scheduler: BlockingScheduler) -> None:
    def _shutdown(signum: int, frame: object) -> None:
        log.info("scheduler.shutdown_requested", signal=signal.Signals(signum).name)
        if not scheduler.running:
            # Startup run still in progress; unwind it like Ctrl-C.
            raise KeyboardInterrupt
        scheduler.shutdown(wait=False)

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _shutdown)
