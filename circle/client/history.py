"""Merging REST history pages with socket-delivered messages.

A client typically loads a page over REST and then receives live frames
over the relay. The two can overlap (a frame arrives while the page is
in flight) or arrive out of order, so lists are merged by message id
instead of appended.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any


def _field(message: Any, wire_name: str, attr_name: str) -> Any:
    if isinstance(message, dict):
        return message.get(wire_name, message.get(attr_name))
    return getattr(message, attr_name)


def _timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value is None:
        return datetime.min.replace(tzinfo=UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def merge_messages(existing: Iterable[Any], incoming: Iterable[Any]) -> list[Any]:
    """Merge two message lists into one ordered, de-duplicated list.

    Messages may be wire dicts (``id``/``createdAt``) or schema objects
    (``id``/``created_at``). When both lists carry the same id, the
    incoming copy wins, so a later read-receipt update replaces the
    stale one.

    Returns:
        Messages ordered by creation time, then id.
    """
    by_id: dict[str, Any] = {}
    for message in existing:
        by_id[_field(message, "id", "id")] = message
    for message in incoming:
        by_id[_field(message, "id", "id")] = message

    return sorted(
        by_id.values(),
        key=lambda m: (_timestamp(_field(m, "createdAt", "created_at")), _field(m, "id", "id")),
    )
