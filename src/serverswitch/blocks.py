"""Block Kit rendering for the server status message.

Everything here is pure: a template plus a status snapshot goes in, a fresh
block list comes out. Nothing is shared between renders, so concurrent
reconciliation passes never see each other's edits.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from serverswitch.layouts import DisplayTemplate
from serverswitch.types import (
    TRANSITIONING_STATES,
    InstanceState,
    RenderedMessage,
    RenderedRow,
    TrackedInstance,
)

REFRESH_ACTION_ID = "RefreshStatuses"  # shared by the header block and its button
LAST_CHECKED_BLOCK_ID = "LastCheckedSummary"
TOGGLE_ACTION_ID = "toggle_power"
INSTANCE_BLOCK_PREFIX = "instance:"

REFRESH_BUTTON_TEXT = ":repeat: Refresh"
WORKING_TEXT = ":stopwatch: One Moment Please :stopwatch:"
TURN_ON_TEXT = "Turn On"
TURN_OFF_TEXT = "Turn Off"
FALLBACK_TEXT = "The statuses of the servers."

YELLOW_CIRCLE = ":large_yellow_circle:"
GREEN_CIRCLE = ":large_green_circle:"
RED_CIRCLE = ":red_circle:"

# state → (emoji, adjective, button label)
_STATE_DISPLAY: dict[int, tuple[str, str, str | None]] = {
    InstanceState.PENDING: (YELLOW_CIRCLE, "starting", None),
    InstanceState.RUNNING: (GREEN_CIRCLE, "running", TURN_OFF_TEXT),
    InstanceState.STOPPING: (YELLOW_CIRCLE, "stopping", None),
    InstanceState.STOPPED: (RED_CIRCLE, "stopped", TURN_ON_TEXT),
}


def describe_row(label: str, state: int) -> tuple[str, str | None]:
    """Return ``(display_text, button_label)`` for one instance row."""
    display = _STATE_DISPLAY.get(state)
    if display is None:
        # shutting-down, terminated, or missing from the describe result
        return f"{label} is about to be deleted", None
    emoji, adjective, button = display
    return f"{emoji} {label} _({adjective})_", button


def format_last_checked(now: datetime, timezone: str) -> str:
    local = now.astimezone(ZoneInfo(timezone))
    hour = local.hour % 12 or 12
    time_part = f"{hour}:{local:%M %p %Z}"
    date_part = f"{local:%A, %B} {local.day}, {local.year}"
    return f"Last checked at {time_part} on {date_part}"


def _button(text: str, action_id: str, value: str) -> dict[str, Any]:
    return {
        "type": "button",
        "text": {"type": "plain_text", "text": text, "emoji": True},
        "action_id": action_id,
        "value": value,
    }


def _instance_block(inst: TrackedInstance, text: str, button: str | None) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "section",
        "block_id": f"{INSTANCE_BLOCK_PREFIX}{inst.key}",
        "text": {"type": "mrkdwn", "text": text},
    }
    if button is not None:
        block["accessory"] = _button(button, TOGGLE_ACTION_ID, inst.instance_id)
    return block


def render(
    template: DisplayTemplate,
    statuses: Mapping[str, int],
    now: datetime,
    *,
    timezone: str = "America/Halifax",
) -> tuple[RenderedMessage, bool]:
    """Apply a status snapshot to a template.

    Args:
        template: Layout to render (not modified).
        statuses: EC2 instance ID → lifecycle code. Missing IDs render as
            "about to be deleted".
        now: Time shown on the "last checked" line. Display only.
        timezone: IANA zone used for the "last checked" line.

    Returns:
        The rendered message and whether any row is pending or stopping.
    """
    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "block_id": REFRESH_ACTION_ID,
            "text": {"type": "mrkdwn", "text": template.title},
            "accessory": _button(REFRESH_BUTTON_TEXT, REFRESH_ACTION_ID, template.layout),
        },
        {
            "type": "context",
            "block_id": LAST_CHECKED_BLOCK_ID,
            "elements": [{"type": "mrkdwn", "text": format_last_checked(now, timezone)}],
        },
    ]

    rows: list[RenderedRow] = []
    any_transitioning = False
    for i, inst in enumerate(template.rows):
        state = statuses.get(inst.instance_id, InstanceState.UNKNOWN)
        text, button = describe_row(inst.label, state)
        if state in TRANSITIONING_STATES:
            any_transitioning = True
        if i > 0:
            blocks.append({"type": "divider", "block_id": f"Divider{i}"})
        blocks.append(_instance_block(inst, text, button))
        rows.append(RenderedRow(inst.key, inst.instance_id, int(state), text, button))

    message = RenderedMessage(
        layout=template.layout,
        blocks=blocks,
        text=FALLBACK_TEXT,
        rows=tuple(rows),
    )
    return message, any_transitioning


# ---------------------------------------------------------------------------
# Helpers for editing a message that came back with a button click
# ---------------------------------------------------------------------------


def mark_working(
    blocks: list[dict[str, Any]], block_id: str
) -> tuple[list[dict[str, Any]], str]:
    """Swap the clicked button's label for the working indicator.

    Returns a copy of ``blocks`` and the button's label before the swap
    ("" if the block has no button).
    """
    updated = copy.deepcopy(blocks)
    for block in updated:
        if block.get("block_id") != block_id:
            continue
        if block.get("type") == "section" and "accessory" in block:
            button = block["accessory"]
        elif block.get("type") == "actions" and block.get("elements"):
            button = block["elements"][0]
        else:
            return updated, ""
        original = button["text"]["text"]
        button["text"]["text"] = WORKING_TEXT
        return updated, original
    return updated, ""


def layout_from_blocks(blocks: list[dict[str, Any]]) -> str:
    """Recover the layout name from the refresh button's value ("" if absent)."""
    for block in blocks:
        if block.get("block_id") == REFRESH_ACTION_ID:
            return block.get("accessory", {}).get("value", "")
    return ""
