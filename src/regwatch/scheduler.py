"""Periodic pipeline runs and the daily digest job on APScheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.blocking import BlockingScheduler

logger = logging.getLogger(__name__)

PIPELINE_JOB_ID = "regwatch_pipeline"
DIGEST_JOB_ID = "regwatch_digest"


@dataclass
class SchedulerOptions:
    interval_minutes: int = 60
    max_runs: int | None = None
    digest_hour: int | None = None
    timezone: str = "UTC"


def _guarded(job: Callable[[], object], label: str) -> Callable[[], None]:
    def run() -> None:
        try:
            job()
        except Exception:
            # Logged only; the next tick runs the job again.
            logger.exception("Scheduled %s failed", label)

    return run


def start_scheduler(
    run_pipeline: Callable[[], object],
    options: SchedulerOptions,
    *,
    send_digest: Callable[[], object] | None = None,
    scheduler: BlockingScheduler | None = None,
) -> int:
    """Run the pipeline now and then every ``interval_minutes``.

    Returns the number of pipeline runs performed. With ``max_runs`` set
    the scheduler shuts itself down after that many runs.
    """
    pipeline_job = _guarded(run_pipeline, "pipeline run")
    if options.max_runs == 1:
        pipeline_job()
        return 1

    sched = scheduler or BlockingScheduler(timezone=options.timezone)
    runs = 0

    def tick() -> None:
        nonlocal runs
        pipeline_job()
        runs += 1
        if options.max_runs is not None and runs >= options.max_runs:
            try:
                sched.shutdown(wait=False)
            except SchedulerNotRunningError:
                pass

    sched.add_job(tick, "interval", minutes=options.interval_minutes, id=PIPELINE_JOB_ID)
    if send_digest is not None and options.digest_hour is not None:
        sched.add_job(_guarded(send_digest, "digest"), "cron", hour=options.digest_hour, id=DIGEST_JOB_ID)
    logger.info("Scheduling pipeline every %d minutes", options.interval_minutes)

    tick()
    if options.max_runs is None or runs < options.max_runs:
        sched.start()
    return runs
