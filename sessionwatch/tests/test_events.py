import asyncio
import unittest

from sessionwatch.events import LifecycleChannel
from sessionwatch.models import SessionEvent, SessionState


def _event(kind: str, session_id: str) -> SessionEvent:
    return SessionEvent(type=kind, session=SessionState(sessionId=session_id, filePath=f"/tmp/{session_id}.jsonl"))


class LifecycleChannelTests(unittest.IsolatedAsyncioTestCase):
    async def test_every_subscriber_sees_events_in_order(self) -> None:
        channel = LifecycleChannel()
        first = channel.subscribe("indexer")
        second = channel.subscribe("stream")

        channel.publish(_event("created", "s1"))
        channel.publish(_event("updated", "s1"))
        channel.publish(_event("deleted", "s1"))
        channel.close()

        async def collect(subscription) -> list[str]:
            return [event.type async for event in subscription]

        results = await asyncio.wait_for(asyncio.gather(collect(first), collect(second)), timeout=1)
        self.assertEqual(results, [["created", "updated", "deleted"]] * 2)
        self.assertEqual(channel.published, 3)

    async def test_unsubscribe_ends_iteration(self) -> None:
        channel = LifecycleChannel()
        subscription = channel.subscribe()
        channel.publish(_event("created", "s1"))
        subscription.close()
        channel.publish(_event("updated", "s1"))

        received = [event.type async for event in subscription]
        self.assertEqual(received, ["created"])
        self.assertEqual(channel.subscriber_count, 0)

    async def test_publish_after_close_is_dropped(self) -> None:
        channel = LifecycleChannel()
        channel.close()
        channel.publish(_event("created", "s1"))
        late = channel.subscribe()
        self.assertIsNone(await asyncio.wait_for(late.get(), timeout=1))
        self.assertEqual(channel.published, 0)
