"""Tests for the Slack transport."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import SERVER1_ID
from slack_sdk.errors import SlackApiError

from serverswitch.blocks import FALLBACK_TEXT
from serverswitch.slack import SlackTransport, parse_click


def _make_transport(on_mention: Any = None, on_click: Any = None) -> SlackTransport:
    transport = SlackTransport(
        "xoxb-fake",
        app_token="xapp-fake",
        on_mention=on_mention,
        on_click=on_click,
    )
    transport._app = MagicMock()
    transport._app.client = AsyncMock()
    return transport


def _body(action_id: str, *, value: str, block_id: str) -> tuple[dict, dict]:
    action = {"action_id": action_id, "block_id": block_id, "value": value, "type": "button"}
    body = {
        "type": "block_actions",
        "user": {"id": "U123"},
        "channel": {"id": "C1"},
        "message": {"ts": "1700000000.000001", "blocks": [{"type": "divider"}]},
        "actions": [action],
    }
    return body, action


# ------------------------------------------------------------------
# Outbound
# ------------------------------------------------------------------


class TestPublish:
    async def test_returns_channel_id_and_ts(self) -> None:
        transport = _make_transport()
        transport._app.client.chat_postMessage.return_value = {
            "ok": True,
            "channel": "C42",
            "ts": "1700000000.000900",
        }
        blocks = [{"type": "divider"}]

        result = await transport.publish("general", blocks)

        assert result == ("C42", "1700000000.000900")
        transport._app.client.chat_postMessage.assert_awaited_once_with(
            channel="general", blocks=blocks, text=FALLBACK_TEXT
        )


class TestUpdate:
    async def test_success(self) -> None:
        transport = _make_transport()

        assert await transport.update("C1", "1.1", [], "hi") is True
        transport._app.client.chat_update.assert_awaited_once_with(
            channel="C1", ts="1.1", blocks=[], text="hi"
        )

    async def test_message_not_found_returns_false(self) -> None:
        transport = _make_transport()
        transport._app.client.chat_update.side_effect = SlackApiError(
            "gone", {"ok": False, "error": "message_not_found"}
        )

        assert await transport.update("C1", "1.1", []) is False

    async def test_other_errors_raise(self) -> None:
        transport = _make_transport()
        transport._app.client.chat_update.side_effect = SlackApiError(
            "nope", {"ok": False, "error": "channel_not_found"}
        )

        with pytest.raises(SlackApiError):
            await transport.update("C1", "1.1", [])


# ------------------------------------------------------------------
# Inbound
# ------------------------------------------------------------------


class TestParseClick:
    def test_toggle(self) -> None:
        body, action = _body("toggle_power", value=SERVER1_ID, block_id="instance:Server1")

        click = parse_click(body, action)

        assert click is not None
        assert click.action == "toggle"
        assert click.channel_id == "C1"
        assert click.message_ts == "1700000000.000001"
        assert click.block_id == "instance:Server1"
        assert click.value == SERVER1_ID
        assert click.blocks == [{"type": "divider"}]
        assert click.user_id == "U123"

    def test_refresh(self) -> None:
        body, action = _body("RefreshStatuses", value="layout 2", block_id="RefreshStatuses")

        click = parse_click(body, action)

        assert click is not None
        assert click.action == "refresh"
        assert click.value == "layout 2"

    def test_unknown_action(self) -> None:
        body, action = _body("something_else", value="x", block_id="y")
        assert parse_click(body, action) is None

    def test_missing_message(self) -> None:
        body, action = _body("toggle_power", value=SERVER1_ID, block_id="instance:Server1")
        del body["message"]
        assert parse_click(body, action) is None


class TestInboundDispatch:
    async def test_mention_forwarded(self) -> None:
        on_mention = AsyncMock()
        transport = _make_transport(on_mention=on_mention)

        await transport._on_mention_event(
            {"type": "app_mention", "text": "<@UBOT> layout 2", "channel": "C9", "user": "U1"}
        )

        on_mention.assert_awaited_once_with("<@UBOT> layout 2", "C9")

    async def test_bot_mentions_ignored(self) -> None:
        on_mention = AsyncMock()
        transport = _make_transport(on_mention=on_mention)

        await transport._on_mention_event({"text": "hi", "channel": "C9", "bot_id": "B1"})

        on_mention.assert_not_awaited()

    async def test_click_forwarded(self) -> None:
        on_click = AsyncMock()
        transport = _make_transport(on_click=on_click)
        body, action = _body("toggle_power", value=SERVER1_ID, block_id="instance:Server1")

        await transport._on_action(body, action)

        on_click.assert_awaited_once()
        (click,) = on_click.await_args.args
        assert click.value == SERVER1_ID

    async def test_unrecognised_click_dropped(self) -> None:
        on_click = AsyncMock()
        transport = _make_transport(on_click=on_click)
        body, action = _body("other", value="x", block_id="y")

        await transport._on_action(body, action)

        on_click.assert_not_awaited()


class _RecordingApp:
    """Stands in for AsyncApp and keeps the listeners it is given."""

    def __init__(self) -> None:
        self.client = AsyncMock()
        self.events: dict[str, Any] = {}
        self.actions: dict[str, Any] = {}
        self.error_handler: Any = None

    def event(self, event_type: str):
        def register(fn):
            self.events[event_type] = fn
            return fn

        return register

    def action(self, action_id: str):
        def register(fn):
            self.actions[action_id] = fn
            return fn

        return register

    def error(self, fn):
        self.error_handler = fn
        return fn


def _registered(on_mention: Any = None, on_click: Any = None) -> _RecordingApp:
    transport = _make_transport(on_mention=on_mention, on_click=on_click)
    app = _RecordingApp()
    transport._app = app
    transport._register_handlers()
    return app


class TestRegisteredHandlers:
    def test_listeners_wired_to_ids(self) -> None:
        app = _registered()

        assert set(app.events) == {"app_mention"}
        assert set(app.actions) == {"RefreshStatuses", "toggle_power"}
        assert app.error_handler is not None

    @pytest.mark.parametrize(
        ("action_id", "value", "block_id", "kind"),
        [
            ("toggle_power", SERVER1_ID, "instance:Server1", "toggle"),
            ("RefreshStatuses", "layout 1", "RefreshStatuses", "refresh"),
        ],
    )
    async def test_ack_before_click_callback(self, action_id, value, block_id, kind) -> None:
        calls = MagicMock()
        ack = AsyncMock()
        on_click = AsyncMock()
        calls.attach_mock(ack, "ack")
        calls.attach_mock(on_click, "on_click")
        app = _registered(on_click=on_click)
        body, action = _body(action_id, value=value, block_id=block_id)

        await app.actions[action_id](ack=ack, body=body, action=action)

        assert [name for name, _, _ in calls.mock_calls] == ["ack", "on_click"]
        (click,) = on_click.await_args.args
        assert click.action == kind
        assert click.value == value

    async def test_ack_even_when_click_is_not_ours(self) -> None:
        ack = AsyncMock()
        on_click = AsyncMock()
        app = _registered(on_click=on_click)
        body, action = _body("toggle_power", value=SERVER1_ID, block_id="instance:Server1")
        del body["message"]

        await app.actions["toggle_power"](ack=ack, body=body, action=action)

        ack.assert_awaited_once()
        on_click.assert_not_awaited()

    async def test_mention_listener(self) -> None:
        on_mention = AsyncMock()
        app = _registered(on_mention=on_mention)

        await app.events["app_mention"](
            event={"type": "app_mention", "text": "<@UBOT>", "channel": "C9", "user": "U1"}
        )

        on_mention.assert_awaited_once_with("<@UBOT>", "C9")

    async def test_error_handler_logs_without_raising(self) -> None:
        app = _registered()
        error = RuntimeError("ec2 down")

        with patch("serverswitch.slack.logger") as mock_logger:
            await app.error_handler(error=error, body={"type": "block_actions"})
            await app.error_handler(error=error, body=None)

        assert mock_logger.error.call_count == 2
        first = mock_logger.error.call_args_list[0]
        assert first.kwargs["event_type"] == "block_actions"
        assert first.kwargs["exc_info"] is error
        assert mock_logger.error.call_args_list[1].kwargs["event_type"] == ""


class TestConnectionState:
    def test_not_connected_initially(self) -> None:
        assert _make_transport().is_connected() is False

    async def test_disconnect_closes_handler(self) -> None:
        transport = _make_transport()
        transport._connected = True
        transport._handler = MagicMock()
        transport._handler.close_async = AsyncMock(side_effect=RuntimeError("already closed"))

        await transport.disconnect()

        assert transport.is_connected() is False
        transport._handler.close_async.assert_awaited_once()
