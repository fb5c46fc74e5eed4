"""Data models for serverswitch."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Literal

ReconcileMode = Literal["publish", "update"]


class InstanceState(IntEnum):
    """EC2 lifecycle codes (low byte of ``InstanceState.Code``)."""

    UNKNOWN = -1  # not returned by the describe call
    PENDING = 0
    RUNNING = 16
    SHUTTING_DOWN = 32
    TERMINATED = 48
    STOPPING = 64
    STOPPED = 80


TRANSITIONING_STATES = frozenset({InstanceState.PENDING, InstanceState.STOPPING})


@dataclass(frozen=True)
class TrackedInstance:
    key: str  # stable row identifier, e.g. "Server1"
    label: str  # display name, e.g. "Server 1"
    instance_id: str  # EC2 instance ID


@dataclass(frozen=True)
class MessageLocation:
    """Where a published status message lives, so it can be revisited later."""

    channel_id: str
    ts: str
    layout: str

    @property
    def key(self) -> str:
        return location_key(self.layout, self.channel_id)


def location_key(layout: str, channel_id: str) -> str:
    return f"{layout}:{channel_id}"


@dataclass(frozen=True)
class RenderedRow:
    key: str
    instance_id: str
    state: int
    display_text: str
    button_label: str | None  # None → no button while transitioning/disappearing


@dataclass(frozen=True)
class RenderedMessage:
    layout: str
    blocks: list[dict[str, Any]]
    text: str
    rows: tuple[RenderedRow, ...] = ()


@dataclass
class ButtonClick:
    """A block_actions interaction, reduced to what the click handler needs."""

    action: Literal["refresh", "toggle"]
    channel_id: str
    message_ts: str
    block_id: str
    value: str  # layout name (refresh) or EC2 instance ID (toggle)
    blocks: list[dict[str, Any]] = field(default_factory=list)
    user_id: str = ""
