"""Tests for the in-process event bus."""

import asyncio

import pytest

from gvflow.models.event import VariableEvent, VariableEventType
from gvflow.services.event_bus import EventBus


@pytest.fixture
async def bus():
    bus = EventBus()
    await bus.start()
    yield bus
    await bus.shutdown()


class TestEventBus:
    """Tests for publish/subscribe delivery."""

    @pytest.mark.asyncio
    async def test_delivery_is_deferred(self, bus):
        """Publishing returns before any handler runs."""
        received: list[VariableEvent] = []
        bus.subscribe(VariableEventType.CREATED, received.append)

        event = bus.publish(VariableEventType.CREATED, {"id": 1})
        assert received == []

        await bus.drain()
        assert received == [event]

    @pytest.mark.asyncio
    async def test_only_matching_type_delivered(self, bus):
        created: list[VariableEvent] = []
        deleted: list[VariableEvent] = []
        bus.subscribe("created", created.append)
        bus.subscribe("deleted", deleted.append)

        bus.publish(VariableEventType.DELETED, "x")
        await bus.drain()

        assert created == []
        assert [e.payload for e in deleted] == ["x"]

    @pytest.mark.asyncio
    async def test_same_type_in_publish_order(self, bus):
        """Each subscriber sees events of one type in publish order."""
        seen: list[int] = []

        async def slow_handler(event: VariableEvent) -> None:
            await asyncio.sleep(0.01 if event.payload == 0 else 0)
            seen.append(event.payload)

        bus.subscribe(VariableEventType.UPDATED, slow_handler)
        for i in range(5):
            bus.publish(VariableEventType.UPDATED, i)
        await bus.drain()

        assert seen == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, bus):
        """A throwing subscriber affects neither the publisher nor other subscribers."""
        healthy: list[VariableEvent] = []

        def broken(event: VariableEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(VariableEventType.CREATED, broken)
        bus.subscribe(VariableEventType.CREATED, healthy.append)

        bus.publish(VariableEventType.CREATED, 1)
        bus.publish(VariableEventType.CREATED, 2)
        await bus.drain()

        assert [e.payload for e in healthy] == [1, 2]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus):
        received: list[VariableEvent] = []
        unsubscribe = bus.subscribe(VariableEventType.INVALIDATED, received.append)
        assert bus.subscriber_count == 1

        unsubscribe()
        bus.publish(VariableEventType.INVALIDATED, 1)
        await bus.drain()

        assert received == []
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_subscribe_many(self, bus):
        received: list[str] = []
        unsubscribe = bus.subscribe_many(
            {
                VariableEventType.CREATED: lambda e: received.append("created"),
                VariableEventType.SOURCE_RENAMED: lambda e: received.append("renamed"),
            }
        )

        bus.publish(VariableEventType.CREATED, None)
        bus.publish(VariableEventType.SOURCE_RENAMED, None)
        await bus.drain()
        assert sorted(received) == ["created", "renamed"]

        unsubscribe()
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_events_queued_before_start(self):
        """Events published before start are delivered once workers run."""
        bus = EventBus()
        received: list[VariableEvent] = []
        bus.subscribe(VariableEventType.CREATED, received.append)
        bus.publish(VariableEventType.CREATED, "early")

        await bus.start()
        await bus.drain()
        await bus.shutdown()

        assert [e.payload for e in received] == ["early"]
