"""Tests for progress events and their broadcaster."""

import asyncio

import pytest

from couchstream.clients.db.models.Progress import ProgressEvent
from couchstream.streaming.ProgressBroadcaster import ProgressBroadcaster


class TestProgressEvent:
    def test_percentage(self):
        """The percentage is derived from processed and total."""
        assert ProgressEvent.create(50, 200, "t", "download").percentage == 25

    def test_unknown_total(self):
        """Without a total the percentage stays 0."""
        assert ProgressEvent.create(50, 0, "t", "download").percentage == 0

    def test_percentage_is_capped(self):
        """More bytes than announced never exceed 100."""
        assert ProgressEvent.create(300, 200, "t", "upload").percentage == 100


class TestProgressBroadcaster:
    @pytest.mark.asyncio
    async def test_events_reach_matching_subscriptions(self):
        """Subscriptions receive all events or only their token's."""
        broadcaster = ProgressBroadcaster()
        everything = broadcaster.subscribe()
        only_a = broadcaster.subscribe("a")

        broadcaster.report(1, 2, "a", "download")
        broadcaster.report(1, 2, "b", "upload")

        assert [e.request_token for e in everything.pending()] == ["a", "b"]
        assert [e.request_token for e in only_a.pending()] == ["a"]

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_iteration(self):
        """Closing ends the async iteration after the buffered events."""
        broadcaster = ProgressBroadcaster()
        async with broadcaster.subscribe() as subscription:
            broadcaster.report(2, 2, "a", "download")
        assert broadcaster.subscriber_count == 0

        events = [event async for event in subscription]
        assert [e.processed for e in events] == [2]

    @pytest.mark.asyncio
    async def test_no_subscribers_no_events(self):
        """Reports without subscribers are dropped."""
        broadcaster = ProgressBroadcaster()
        broadcaster.report(1, 1, "a", "upload")
        subscription = broadcaster.subscribe()
        assert subscription.pending() == []

    @pytest.mark.asyncio
    async def test_closed_subscription_keeps_stopping(self):
        """Every read after the buffer is drained stops at once."""
        broadcaster = ProgressBroadcaster()
        subscription = broadcaster.subscribe()
        broadcaster.report(1, 1, "a", "download")
        subscription.close()

        assert (await subscription.__anext__()).processed == 1
        for _ in range(2):
            with pytest.raises(StopAsyncIteration):
                await asyncio.wait_for(subscription.__anext__(), timeout=1)
