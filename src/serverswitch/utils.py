"""Shared utility functions."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from croniter import croniter

from serverswitch.logger import logger


def compute_next_run(schedule: str, timezone: str, *, after: datetime | None = None) -> str:
    """Next fire time of a cron expression, evaluated in ``timezone``.

    Always returns UTC isoformat so callers can compare against
    ``datetime.now(UTC)`` without caring about the configured zone.
    """
    tz = ZoneInfo(timezone)
    base = (after or datetime.now(UTC)).astimezone(tz)
    cron = croniter(schedule, base)
    return cron.get_next(datetime).astimezone(UTC).isoformat()


def create_background_task(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str | None = None,
) -> asyncio.Task[Any]:
    """Create an asyncio task that logs exceptions instead of swallowing them.

    A drop-in replacement for ``asyncio.create_task`` for fire-and-forget
    work (deferred re-checks, refresh fan-out) where we don't await the
    result but still want failures to appear in logs.
    """
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_exception)
    return task


def _log_task_exception(task: asyncio.Task[Any]) -> None:
    """Done-callback for background tasks that logs unhandled exceptions."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # exc_info instead of logger.exception(): we're in a done-callback,
        # not an except handler.
        logger.error(
            "Background task failed",
            task_name=task.get_name(),
            exc_info=exc,
        )
