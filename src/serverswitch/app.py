"""Main orchestrator. Wires Slack, EC2, the registry, and the scheduler together."""

from __future__ import annotations

import asyncio
import signal
from typing import Any

from serverswitch.config import Settings, get_settings
from serverswitch.db import close_database, init_database
from serverswitch.ec2 import Ec2InstanceSource
from serverswitch.logger import logger, set_level
from serverswitch.reconciler import Reconciler
from serverswitch.scheduler import (
    DAILY_SHUTDOWN,
    HOURLY_REFRESH,
    ScheduledJob,
    start_scheduler_loop,
)
from serverswitch.slack import SlackTransport


def _secret(value: Any) -> str | None:
    return value.get_secret_value() if value is not None else None


class ServerSwitchApp:
    """Owns runtime state for one bot process."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        s = self.settings
        set_level(s.logging.level)
        bot_token = _secret(s.slack.bot_token)
        if not bot_token:
            raise RuntimeError("SLACK__BOT_TOKEN is not configured")

        self.transport = SlackTransport(
            bot_token,
            signing_secret=_secret(s.slack.signing_secret),
            app_token=_secret(s.slack.app_token),
            port=s.server.port,
            on_mention=self._on_mention,
            on_click=self._on_click,
        )
        self.reconciler = Reconciler(
            Ec2InstanceSource(),
            self.transport,
            region=s.aws.region,
            instances=s.tracked_instances,
            recheck_delay=s.reconcile.recheck_delay,
            display_timezone=s.display.timezone,
            title=s.display.title,
            destination_for=s.destination_for,
        )
        self._scheduler_task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Chat callbacks
    # ------------------------------------------------------------------

    async def _on_mention(self, text: str, channel_id: str) -> None:
        await self.reconciler.handle_mention(text, channel_id)

    async def _on_click(self, click: Any) -> None:
        await self.reconciler.handle_click(click)

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def jobs(self) -> list[ScheduledJob]:
        s = self.settings.scheduler
        return [
            ScheduledJob(HOURLY_REFRESH, s.refresh_schedule, self.reconciler.refresh_all),
            ScheduledJob(DAILY_SHUTDOWN, s.shutdown_schedule, self.reconciler.shutdown_running),
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _shutdown(self, sig_name: str) -> None:
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)

        if self._scheduler_task and not self._scheduler_task.done():
            self._scheduler_task.cancel()
        await self.reconciler.close()
        await self.transport.disconnect()
        await close_database()
        self._stop.set()

    async def run(self) -> None:
        """Main entry point: startup sequence, then wait for a signal."""
        await init_database(self.settings.store_path)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self._shutdown(s.name)),
            )

        await self.transport.connect()

        s = self.settings.scheduler
        self._scheduler_task = asyncio.create_task(
            start_scheduler_loop(self.jobs(), timezone=s.timezone, poll_interval=s.poll_interval),
            name="scheduler",
        )
        logger.info("serverswitch is running", region=self.settings.aws.region)
        await self._stop.wait()

    async def run_once(self, job: str) -> None:
        """Run one scheduled policy immediately and wait for its passes.

        Returns only after every message it touched has settled, so a
        shutdown run doesn't leave messages showing "stopping".
        """
        await init_database(self.settings.store_path)
        self.transport.start_client()
        try:
            if job == DAILY_SHUTDOWN:
                await self.reconciler.shutdown_running()
            else:
                await self.reconciler.refresh_all()
            await self.reconciler.wait_for_refreshes()
            await self.reconciler.wait_for_rechecks()
        finally:
            await self.reconciler.close()
            await close_database()
