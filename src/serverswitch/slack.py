"""SlackTransport posts and updates status messages and delivers mentions and clicks.

Runs over Socket Mode when an app-level token is configured, otherwise
serves Bolt's Events API endpoint over HTTP on the configured port.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web
from slack_sdk.errors import SlackApiError

from serverswitch.blocks import FALLBACK_TEXT, REFRESH_ACTION_ID, TOGGLE_ACTION_ID
from serverswitch.logger import logger
from serverswitch.types import ButtonClick

EVENTS_PATH = "/slack/events"
MESSAGE_NOT_FOUND = "message_not_found"

MentionCallback = Callable[[str, str], Awaitable[None]]  # (text, channel_id)
ClickCallback = Callable[[ButtonClick], Awaitable[None]]


def parse_click(body: dict[str, Any], action: dict[str, Any]) -> ButtonClick | None:
    """Reduce a block_actions payload to a ButtonClick (None if it isn't ours)."""
    action_id = action.get("action_id", "")
    if action_id == REFRESH_ACTION_ID:
        kind = "refresh"
    elif action_id == TOGGLE_ACTION_ID:
        kind = "toggle"
    else:
        return None

    channel_id = body.get("channel", {}).get("id", "")
    message = body.get("message", {})
    message_ts = message.get("ts", "")
    if not channel_id or not message_ts:
        return None

    return ButtonClick(
        action=kind,
        channel_id=channel_id,
        message_ts=message_ts,
        block_id=action.get("block_id", ""),
        value=action.get("value", ""),
        blocks=message.get("blocks", []),
        user_id=body.get("user", {}).get("id", ""),
    )


class SlackTransport:
    """Chat transport backed by slack_bolt's AsyncApp."""

    def __init__(
        self,
        bot_token: str,
        *,
        signing_secret: str | None = None,
        app_token: str | None = None,
        port: int = 3003,
        on_mention: MentionCallback | None = None,
        on_click: ClickCallback | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._signing_secret = signing_secret
        self._app_token = app_token
        self._port = port
        self._on_mention = on_mention
        self._on_click = on_click
        self._connected = False

        # Lazy-initialised in start_client() / connect()
        self._app: Any = None
        self._handler: Any = None
        self._handler_task: asyncio.Task[None] | None = None
        self._http_runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_client(self) -> None:
        """Create the Bolt app without listening (enough for one-shot jobs)."""
        if self._app is not None:
            return
        from slack_bolt.async_app import AsyncApp

        if self._app_token:
            self._app = AsyncApp(token=self._bot_token)
        else:
            self._app = AsyncApp(token=self._bot_token, signing_secret=self._signing_secret)

    async def connect(self) -> None:
        self.start_client()
        self._register_handlers()

        if self._app_token:
            from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler

            self._handler = AsyncSocketModeHandler(self._app, self._app_token)
            self._handler_task = asyncio.create_task(
                self._handler.start_async(), name="slack-socket-mode"
            )
            mode = "socket"
        else:
            server = self._app.server(port=self._port, path=EVENTS_PATH)
            self._http_runner = web.AppRunner(server.web_app)
            await self._http_runner.setup()
            site = web.TCPSite(self._http_runner, "0.0.0.0", self._port)
            await site.start()
            mode = "http"

        self._connected = True
        logger.info("Slack transport connected", mode=mode, port=self._port)

    def is_connected(self) -> bool:
        if not self._connected:
            return False
        if self._handler_task is not None:
            return not self._handler_task.done()
        return True

    async def disconnect(self) -> None:
        self._connected = False
        if self._handler:
            try:
                await self._handler.close_async()
            except Exception:
                logger.debug("Slack handler close error (ignored)", exc_info=True)
        if self._handler_task and not self._handler_task.done():
            self._handler_task.cancel()
        if self._http_runner is not None:
            await self._http_runner.cleanup()
            self._http_runner = None
        logger.info("Slack transport disconnected")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def publish(
        self, channel: str, blocks: list[dict[str, Any]], text: str = FALLBACK_TEXT
    ) -> tuple[str, str]:
        """Post a new message and return ``(channel_id, ts)``.

        ``channel`` may be a name ("general"); the returned channel is always
        the real ID.
        """
        resp = await self._app.client.chat_postMessage(channel=channel, blocks=blocks, text=text)
        return resp["channel"], resp["ts"]

    async def update(
        self,
        channel_id: str,
        ts: str,
        blocks: list[dict[str, Any]],
        text: str = FALLBACK_TEXT,
    ) -> bool:
        """Replace a message's content in place.

        Returns False when Slack reports the message no longer exists; every
        other API error propagates.
        """
        try:
            await self._app.client.chat_update(channel=channel_id, ts=ts, blocks=blocks, text=text)
        except SlackApiError as exc:
            if exc.response.get("error") == MESSAGE_NOT_FOUND:
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _register_handlers(self) -> None:
        assert self._app is not None

        @self._app.event("app_mention")
        async def _handle_mention(event: dict[str, Any]) -> None:
            await self._on_mention_event(event)

        @self._app.action(REFRESH_ACTION_ID)
        async def _handle_refresh(ack: Any, body: dict[str, Any], action: dict[str, Any]) -> None:
            # ack before anything slow: Slack gives up on the click after 3s
            await ack()
            await self._on_action(body, action)

        @self._app.action(TOGGLE_ACTION_ID)
        async def _handle_toggle(ack: Any, body: dict[str, Any], action: dict[str, Any]) -> None:
            await ack()
            await self._on_action(body, action)

        @self._app.error
        async def _handle_error(error: Exception, body: dict[str, Any]) -> None:
            logger.error(
                "Slack handler failed",
                event_type=body.get("type", "") if isinstance(body, dict) else "",
                exc_info=error,
            )

    async def _on_mention_event(self, event: dict[str, Any]) -> None:
        if self._on_mention is None or event.get("bot_id"):
            return
        text = event.get("text", "")
        channel_id = event.get("channel", "")
        logger.info("Slack mention", channel=channel_id, user=event.get("user", ""))
        await self._on_mention(text, channel_id)

    async def _on_action(self, body: dict[str, Any], action: dict[str, Any]) -> None:
        if self._on_click is None:
            return
        click = parse_click(body, action)
        if click is None:
            logger.debug("Ignoring unrecognised Slack action", action_id=action.get("action_id"))
            return
        logger.info(
            "Slack button click",
            action=click.action,
            channel=click.channel_id,
            user=click.user_id,
        )
        await self._on_click(click)
