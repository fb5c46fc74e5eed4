"""Status message reconciliation.

Keeps Slack status messages in line with actual EC2 state. One pass fetches
statuses, renders, publishes or updates, and, while any instance is still
starting or stopping, schedules a single deferred re-check of the same
message. Each re-check decides anew whether to schedule the next one, so a
message is polled until its instances settle or the message disappears.

Passes for the same message are not serialized against each other: a click
and a pending re-check that fire close together both run, and the last
update/registry write wins. The hourly refresh corrects any drift.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from serverswitch.blocks import (
    TURN_ON_TEXT,
    layout_from_blocks,
    mark_working,
    render,
)
from serverswitch.db import get_location, list_location_keys, put_location, remove_location
from serverswitch.layouts import get_template, is_known_layout, layout_for_mention
from serverswitch.logger import logger
from serverswitch.types import (
    ButtonClick,
    InstanceState,
    MessageLocation,
    ReconcileMode,
    TrackedInstance,
    location_key,
)
from serverswitch.utils import create_background_task

_SHUTDOWN_STATES = frozenset({InstanceState.PENDING, InstanceState.RUNNING})


class InstanceSource(Protocol):
    """Reads and toggles instance power state."""

    async def describe_statuses(
        self, region: str, instance_ids: Sequence[str]
    ) -> dict[str, int]: ...

    async def start(self, region: str, instance_id: str) -> None: ...

    async def stop(self, region: str, instance_id: str) -> None: ...


class ChatTransport(Protocol):
    """Posts and edits chat messages."""

    async def publish(
        self, channel: str, blocks: list[dict[str, Any]], text: str = ...
    ) -> tuple[str, str]: ...

    async def update(
        self, channel_id: str, ts: str, blocks: list[dict[str, Any]], text: str = ...
    ) -> bool: ...


class Reconciler:
    """Owns every reconciliation pass and the deferred re-checks between them."""

    def __init__(
        self,
        source: InstanceSource,
        transport: ChatTransport,
        *,
        region: str,
        instances: Sequence[TrackedInstance],
        recheck_delay: float = 15.0,
        display_timezone: str = "America/Halifax",
        title: str = "*Test Servers*",
        destination_for: Callable[[str], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._transport = transport
        self._region = region
        self._instances = tuple(instances)
        self._recheck_delay = recheck_delay
        self._display_timezone = display_timezone
        self._title = title
        self._destination_for = destination_for or (lambda _layout: "")
        self._clock = clock or (lambda: datetime.now(UTC))
        # (layout, channel_id, ts) → pending one-shot re-check
        self._rechecks: dict[tuple[str, str, str], asyncio.Task[None]] = {}
        self._refreshes: set[asyncio.Task[Any]] = set()

    @property
    def pending_rechecks(self) -> set[tuple[str, str, str]]:
        return {k for k, t in self._rechecks.items() if not t.done()}

    @property
    def _instance_ids(self) -> list[str]:
        return [inst.instance_id for inst in self._instances]

    # ------------------------------------------------------------------
    # Reconciliation pass
    # ------------------------------------------------------------------

    async def reconcile(
        self, mode: ReconcileMode, layout: str, channel: str, ts: str = ""
    ) -> None:
        """Run one pass: fetch → render → publish/update → maybe re-check.

        A status-fetch failure propagates before anything is sent and
        without scheduling a re-check.
        """
        template = get_template(layout, self._instances, title=self._title)
        statuses = await self._source.describe_statuses(self._region, self._instance_ids)
        message, transitioning = render(
            template, statuses, self._clock(), timezone=self._display_timezone
        )

        if mode == "publish":
            channel, ts = await self._transport.publish(channel, message.blocks, message.text)
            # only the newest message per layout+channel is tracked
            await put_location(MessageLocation(channel_id=channel, ts=ts, layout=template.layout))
            logger.info("Published status message", layout=template.layout, channel=channel, ts=ts)
        else:
            found = await self._transport.update(channel, ts, message.blocks, message.text)
            if not found:
                logger.info(
                    "Status message no longer exists, forgetting it",
                    layout=template.layout,
                    channel=channel,
                    ts=ts,
                )
                await remove_location(location_key(template.layout, channel))
                transitioning = False

        if transitioning:
            self._schedule_recheck(template.layout, channel, ts)

    def _schedule_recheck(self, layout: str, channel: str, ts: str) -> None:
        key = (layout, channel, ts)
        existing = self._rechecks.get(key)
        if existing is not None and not existing.done():
            return
        logger.debug("Instance still changing state, re-checking later", layout=layout, ts=ts)
        self._rechecks[key] = create_background_task(
            self._recheck(key), name=f"recheck-{layout}-{channel}-{ts}"
        )

    async def _recheck(self, key: tuple[str, str, str]) -> None:
        await asyncio.sleep(self._recheck_delay)
        # drop ourselves first so the pass below can chain the next re-check
        self._rechecks.pop(key, None)
        layout, channel, ts = key
        await self.reconcile("update", layout, channel, ts)

    async def close(self) -> None:
        """Cancel pending re-checks and fan-out passes (used on shutdown)."""
        tasks = [t for t in [*self._rechecks.values(), *self._refreshes] if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._rechecks.clear()
        self._refreshes.clear()

    # ------------------------------------------------------------------
    # Fan-out and scheduled policies
    # ------------------------------------------------------------------

    async def refresh_all(self, exclude_key: str = "") -> list[asyncio.Task[Any]]:
        """Start an independent update pass for every tracked message.

        Passes run concurrently as background tasks; their failures are
        logged, never raised here. The tasks are returned for callers that
        want to wait (one-shot CLI runs).
        """
        tasks: list[asyncio.Task[Any]] = []
        for key in await list_location_keys():
            if exclude_key and key == exclude_key:
                continue
            location = await get_location(key)
            if location is None:
                continue
            task = create_background_task(
                self.reconcile("update", location.layout, location.channel_id, location.ts),
                name=f"refresh-{key}",
            )
            self._refreshes.add(task)
            task.add_done_callback(self._refreshes.discard)
            tasks.append(task)
        logger.info("Refreshing tracked messages", count=len(tasks), excluded=exclude_key or None)
        return tasks

    async def wait_for_refreshes(self) -> None:
        """Wait for in-flight fan-out passes (not their re-checks)."""
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)

    async def wait_for_rechecks(self) -> None:
        """Wait until no message has a re-check pending.

        A re-check that still sees a transitioning instance schedules the
        next one, so this returns only once every reconciled message has
        settled or disappeared.
        """
        while True:
            pending = [t for t in self._rechecks.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown_running(self) -> bool:
        """Stop every tracked instance that is pending or running.

        Returns True if at least one stop was issued, in which case every
        tracked message is refreshed.
        """
        statuses = await self._source.describe_statuses(self._region, self._instance_ids)
        stopped = False
        for instance_id, state in statuses.items():
            if state in _SHUTDOWN_STATES:
                await self._source.stop(self._region, instance_id)
                stopped = True
        if stopped:
            logger.info("Nightly shutdown stopped instances")
            await self.refresh_all()
        else:
            logger.info("Nightly shutdown found nothing running")
        return stopped

    # ------------------------------------------------------------------
    # Chat events
    # ------------------------------------------------------------------

    async def handle_mention(self, text: str, channel_id: str) -> None:
        layout = layout_for_mention(text)
        destination = self._destination_for(layout) or channel_id
        await self.reconcile("publish", layout, destination)

    async def handle_click(self, click: ButtonClick) -> None:
        """Refresh or power-toggle from a button on an existing message.

        The interaction has already been acknowledged by the transport.
        """
        layout = layout_from_blocks(click.blocks)
        if not is_known_layout(layout):
            logger.debug("Ignoring click on message without a known layout", ts=click.message_ts)
            return

        instance_id = ""
        if click.action == "toggle":
            instance_id = click.value
            if instance_id not in self._instance_ids:
                logger.debug("Ignoring click for untracked instance", instance_id=instance_id)
                return

        working_blocks, label = mark_working(click.blocks, click.block_id)
        await self._transport.update(click.channel_id, click.message_ts, working_blocks)

        if click.action == "toggle":
            if label == TURN_ON_TEXT:
                await self._source.start(self._region, instance_id)
            else:
                await self._source.stop(self._region, instance_id)

        await self.reconcile("update", layout, click.channel_id, click.message_ts)
        if click.action != "toggle":
            return
        # other messages show the same instances; don't wait on them
        task = create_background_task(
            self.refresh_all(location_key(layout, click.channel_id)),
            name="refresh-others",
        )
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)
