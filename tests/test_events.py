"""EventBus 발행/구독 테스트."""

import asyncio

import pytest

from app.tasks.events import EventBus, EventType


class TestSubscribe:
    def test_delivers_in_publish_order(self):
        bus = EventBus()
        seen = []
        bus.subscribe(lambda e: seen.append((e.type, e.data["n"])))

        bus.publish(EventType.ITEM_STARTED, {"n": 1})
        bus.publish(EventType.ITEM_COMPLETED, {"n": 2})

        assert seen == [(EventType.ITEM_STARTED, 1), (EventType.ITEM_COMPLETED, 2)]

    def test_filters_by_event_type(self):
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append, [EventType.ITEM_FAILED])

        bus.publish(EventType.ITEM_STARTED, {})
        bus.publish(EventType.ITEM_FAILED, {"reason": "x"})

        assert [e.type for e in seen] == [EventType.ITEM_FAILED]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        bus.publish(EventType.QUEUE_UPDATED, {})

        assert seen == []
        assert bus.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(self, caplog):
        bus = EventBus()
        seen = []

        def broken(event):
            raise ValueError("subscriber bug")

        bus.subscribe(broken)
        bus.subscribe(seen.append)

        bus.publish(EventType.AUTOMATION_PROGRESS, {"progress": 10})

        assert len(seen) == 1
        assert "Subscriber failed on automationProgress" in caplog.text


class TestMessages:
    def test_to_message_shape(self):
        event = EventBus().publish(EventType.AUTOMATION_PROGRESS, {"taskId": "t", "progress": 40})

        message = event.to_message()

        assert message["type"] == "automationProgress"
        assert message["data"] == {"taskId": "t", "progress": 40}
        assert isinstance(message["timestamp"], str)


class TestAsyncDelivery:
    @pytest.mark.asyncio
    async def test_coroutine_subscriber_scheduled(self):
        bus = EventBus()
        received = asyncio.Event()

        async def on_event(event):
            received.set()

        bus.subscribe(on_event)
        bus.publish(EventType.ITEM_STARTED, {})

        await asyncio.wait_for(received.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_open_stream(self):
        bus = EventBus()
        queue, unsubscribe = bus.open_stream(maxsize=1)

        bus.publish(EventType.ITEM_STARTED, {"n": 1})
        # 가득 찬 스트림은 이벤트를 버린다
        bus.publish(EventType.ITEM_STARTED, {"n": 2})
        unsubscribe()
        bus.publish(EventType.ITEM_STARTED, {"n": 3})

        event = queue.get_nowait()
        assert event.data == {"n": 1}
        assert queue.empty()
