"""Display templates: which tracked instances a status message shows."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from serverswitch.types import TrackedInstance

LAYOUT_ALL_SERVERS = "layout 1"
LAYOUT_SERVER2 = "layout 2"

# layout name → row keys, in display order
_LAYOUT_ROWS: dict[str, tuple[str, ...]] = {
    LAYOUT_ALL_SERVERS: ("Server1", "Server2"),
    LAYOUT_SERVER2: ("Server2",),
}


@dataclass(frozen=True)
class DisplayTemplate:
    layout: str
    title: str
    rows: tuple[TrackedInstance, ...]


def is_known_layout(layout: str) -> bool:
    return layout in _LAYOUT_ROWS


def layout_for_mention(text: str) -> str:
    """Pick the layout keyword out of a mention; the all-servers layout by default."""
    if LAYOUT_SERVER2 in text.lower():
        return LAYOUT_SERVER2
    return LAYOUT_ALL_SERVERS


def get_template(
    layout: str,
    instances: Iterable[TrackedInstance],
    *,
    title: str = "*Test Servers*",
) -> DisplayTemplate:
    """Build the template for ``layout``. Unknown names fall back to the all-servers layout."""
    row_keys = _LAYOUT_ROWS.get(layout)
    if row_keys is None:
        layout, row_keys = LAYOUT_ALL_SERVERS, _LAYOUT_ROWS[LAYOUT_ALL_SERVERS]
    by_key = {inst.key: inst for inst in instances}
    rows = tuple(by_key[k] for k in row_keys if k in by_key)
    return DisplayTemplate(layout=layout, title=title, rows=rows)
