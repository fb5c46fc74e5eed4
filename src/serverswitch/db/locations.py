"""Message registry: where each layout was last published, per channel."""

from __future__ import annotations

from datetime import UTC, datetime

from serverswitch.db._connection import _get_db
from serverswitch.types import MessageLocation


async def put_location(location: MessageLocation) -> None:
    """Remember a published message, replacing any older one for the same key."""
    db = _get_db()
    await db.execute(
        "INSERT OR REPLACE INTO message_locations (key, channel_id, ts, layout, updated_at)"
        " VALUES (?, ?, ?, ?, ?)",
        (
            location.key,
            location.channel_id,
            location.ts,
            location.layout,
            datetime.now(UTC).isoformat(),
        ),
    )
    await db.commit()


async def get_location(key: str) -> MessageLocation | None:
    db = _get_db()
    cursor = await db.execute(
        "SELECT channel_id, ts, layout FROM message_locations WHERE key = ?", (key,)
    )
    row = await cursor.fetchone()
    if row is None:
        return None
    return MessageLocation(channel_id=row["channel_id"], ts=row["ts"], layout=row["layout"])


async def remove_location(key: str) -> None:
    db = _get_db()
    await db.execute("DELETE FROM message_locations WHERE key = ?", (key,))
    await db.commit()


async def list_location_keys() -> list[str]:
    db = _get_db()
    cursor = await db.execute("SELECT key FROM message_locations ORDER BY key")
    rows = await cursor.fetchall()
    return [row["key"] for row in rows]
