"""Tests for the async activity feed."""

from __future__ import annotations

import pytest

from conduit_core.engine import Conduit
from conduit_core.storage.feed import ActivityFeed

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


async def test_recent_is_newest_first(conduit: Conduit) -> None:
    for message in ("one", "two", "three"):
        conduit.activity.record(message, "hired")

    async with ActivityFeed(conduit.db.db_path) as feed:
        events = await feed.recent(2)

    assert [event.message for _, event in events] == ["three", "two"]
    assert events[0][0] > events[1][0]


async def test_since_tails_new_events(conduit: Conduit) -> None:
    conduit.activity.record("before", "trust")

    async with ActivityFeed(conduit.db.db_path) as feed:
        [(cursor, _)] = await feed.recent(1)
        assert await feed.since(cursor) == []

        conduit.activity.record("after-1", "payment")
        conduit.activity.record("after-2", "payment")
        tail = await feed.since(cursor)

    assert [event.message for _, event in tail] == ["after-1", "after-2"]
    assert all(seq > cursor for seq, _ in tail)
