"""Tests for merging REST history with live relay messages."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from circle.client.history import merge_messages
from circle.common.schemas import ChatMessage

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def wire(message_id: str, minutes: int, content: str = "hi") -> dict:
    return {
        "id": message_id,
        "content": content,
        "createdAt": (T0 + timedelta(minutes=minutes)).isoformat(),
    }


class TestMergeMessages:
    def test_overlap_deduplicated(self):
        page = [wire("m1", 0), wire("m2", 1)]
        live = [wire("m2", 1), wire("m3", 2)]
        assert [m["id"] for m in merge_messages(page, live)] == ["m1", "m2", "m3"]

    def test_out_of_order_sorted_by_time(self):
        merged = merge_messages([wire("m3", 5)], [wire("m1", 1), wire("m2", 3)])
        assert [m["id"] for m in merged] == ["m1", "m2", "m3"]

    def test_incoming_copy_wins(self):
        stale = wire("m1", 0, content="draft")
        fresh = wire("m1", 0, content="final")
        assert merge_messages([stale], [fresh]) == [fresh]

    def test_same_timestamp_ordered_by_id(self):
        merged = merge_messages([wire("b", 0)], [wire("a", 0)])
        assert [m["id"] for m in merged] == ["a", "b"]

    def test_naive_timestamps_treated_as_utc(self):
        naive = {"id": "m1", "createdAt": "2026-03-01T11:59:00"}
        aware = wire("m2", 0)
        assert [m["id"] for m in merge_messages([aware], [naive])] == ["m1", "m2"]

    def test_schema_objects(self):
        first = ChatMessage(id="m1", circle_id="c", user_id="u", content="a", created_at=T0)
        second = ChatMessage(
            id="m2", circle_id="c", user_id="u", content="b", created_at=T0 + timedelta(seconds=1)
        )
        assert merge_messages([second], [first]) == [first, second]

    def test_empty_inputs(self):
        assert merge_messages([], []) == []
