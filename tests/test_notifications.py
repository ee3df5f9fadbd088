"""
Unit tests for the notification bus.
"""

import asyncio
import logging

import pytest

from fleet_agent.core.notifications import Notification, NotificationBus


class TestNotificationBus:
    """Test publish/subscribe fan-out."""

    def test_publish_without_subscribers_is_dropped(self, bus, caplog):
        with caplog.at_level(logging.INFO, logger="fleet_agent.notifications"):
            notification = bus.publish("nobody is listening")

        assert notification.text == "nobody is listening"
        assert notification.source == "heartbeat"
        assert "notification dropped" in caplog.text

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_no_replay(self, bus):
        bus.publish("too early")
        subscription = bus.subscribe()
        bus.publish("on time")

        received = await asyncio.wait_for(subscription.get(), timeout=1)
        assert received.text == "on time"

    @pytest.mark.asyncio
    async def test_fan_out_to_every_subscriber(self, bus):
        first = bus.subscribe()
        second = bus.subscribe()

        published = bus.publish("check the deploy", source="manual")

        a = await asyncio.wait_for(first.get(), timeout=1)
        b = await asyncio.wait_for(second.get(), timeout=1)
        assert a is published
        assert b is published
        assert a.source == "manual"

    @pytest.mark.asyncio
    async def test_delivery_order_preserved(self, bus):
        subscription = bus.subscribe()
        for text in ("one", "two", "three"):
            bus.publish(text)

        received = [(await subscription.get()).text for _ in range(3)]
        assert received == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, bus):
        subscription = bus.subscribe()
        bus.unsubscribe(subscription)
        bus.unsubscribe(subscription)

        assert bus.subscriber_count == 0
        bus.publish("after close")
        assert await subscription.get() is None

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self, bus):
        subscription = bus.subscribe()
        bus.publish("last")
        subscription.close()

        received = [n.text async for n in subscription]
        assert received == ["last"]

    @pytest.mark.asyncio
    async def test_context_manager_unsubscribes(self, bus):
        async with bus.subscribe():
            assert bus.subscriber_count == 1
        assert bus.subscriber_count == 0

    def test_to_dict(self):
        notification = Notification(text="hi", timestamp="2026-01-01T00:00:00+00:00")
        assert notification.to_dict() == {
            "text": "hi",
            "timestamp": "2026-01-01T00:00:00+00:00",
            "source": "heartbeat",
        }
