"""Job scheduler for the hourly refresh and the nightly shutdown.

Polls on a fixed interval and runs whichever cron jobs are due. Next-run
times are computed in the configured timezone and kept in UTC.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from serverswitch.logger import logger
from serverswitch.utils import compute_next_run

HOURLY_REFRESH = "hourly-refresh"
DAILY_SHUTDOWN = "daily-shutdown"


@dataclass
class ScheduledJob:
    name: str
    schedule: str  # cron expression
    run: Callable[[], Awaitable[object]]


_job_next_runs: dict[str, str] = {}


async def poll_jobs(jobs: list[ScheduledJob], timezone: str) -> list[str]:
    """Run every due job once. Returns the names of the jobs that ran."""
    now = datetime.now(UTC)
    ran: list[str] = []

    for job in jobs:
        next_run = _job_next_runs.get(job.name)
        if next_run is None:
            next_run = compute_next_run(job.schedule, timezone)
            _job_next_runs[job.name] = next_run
            logger.info("Scheduled job", job=job.name, next_run=next_run)

        if datetime.fromisoformat(next_run) > now:
            continue

        # Advance before running so a slow or failing job can't re-trigger.
        _job_next_runs[job.name] = compute_next_run(job.schedule, timezone)
        logger.info("Running scheduled job", job=job.name)
        try:
            await job.run()
        except Exception as exc:
            logger.error("Scheduled job failed", job=job.name, exc_info=exc)
        ran.append(job.name)

    return ran


async def start_scheduler_loop(
    jobs: list[ScheduledJob], *, timezone: str, poll_interval: float
) -> None:
    """Poll for due jobs until cancelled."""
    logger.info("Scheduler loop started", jobs=[j.name for j in jobs], timezone=timezone)
    while True:
        try:
            await poll_jobs(jobs, timezone)
        except Exception as exc:
            logger.error("Error in scheduler loop", err=str(exc))
        await asyncio.sleep(poll_interval)


def reset_schedule() -> None:
    """Forget computed next-run times (for tests)."""
    _job_next_runs.clear()
