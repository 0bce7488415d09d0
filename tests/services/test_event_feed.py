"""Tests for the attendance change feed."""
from rollcall.domain.entities.attendance import AttendanceEvent, AttendanceStatus
from rollcall.services.event_feed import AttendanceEventFeed


class TestAttendanceEventFeed:

    async def test_subscribers_receive_events(self):
        feed = AttendanceEventFeed()
        first, second = feed.subscribe(), feed.subscribe()
        event = AttendanceEvent(identity_id="alice", status=AttendanceStatus.PRESENT)

        await feed.publish(event)

        assert first.get_nowait() is event
        assert second.get_nowait() is event

    async def test_slow_subscriber_is_dropped(self):
        feed = AttendanceEventFeed(max_queue_size=1)
        slow = feed.subscribe()

        await feed.publish(AttendanceEvent(identity_id="alice", status=AttendanceStatus.PRESENT))
        await feed.publish(AttendanceEvent(identity_id="bob", status=AttendanceStatus.LATE))

        assert feed.subscriber_count == 0
        assert slow.qsize() == 1

    async def test_unsubscribe(self):
        feed = AttendanceEventFeed()
        queue = feed.subscribe()
        feed.unsubscribe(queue)
        feed.unsubscribe(queue)

        await feed.publish(AttendanceEvent(identity_id="alice", status=AttendanceStatus.PRESENT))

        assert queue.empty()
