"""Tests for the live-subscriber fanout."""
import asyncio
import threading

from clawguard.extended.fanout import LiveFanout


def test_publish_from_another_thread_reaches_subscriber():
    async def main():
        fanout = LiveFanout()
        fanout.bind(asyncio.get_running_loop())
        queue = fanout.subscribe()
        t = threading.Thread(target=fanout.publish, args=({"type": "activity", "n": 1},))
        t.start()
        t.join()
        return await asyncio.wait_for(queue.get(), timeout=5)

    assert asyncio.run(main()) == {"type": "activity", "n": 1}


def test_full_queue_drops_only_for_that_subscriber():
    async def main():
        fanout = LiveFanout(queue_size=1)
        fanout.bind(asyncio.get_running_loop())
        fast = fanout.subscribe()
        slow = fanout.subscribe()

        fanout.publish({"n": 1})
        await asyncio.sleep(0.05)
        assert fast.get_nowait() == {"n": 1}

        fanout.publish({"n": 2})
        await asyncio.sleep(0.05)
        assert fast.get_nowait() == {"n": 2}
        assert slow.get_nowait() == {"n": 1}
        assert slow.empty()
        return fanout.dropped

    assert asyncio.run(main()) == 1


def test_unsubscribed_queue_receives_nothing():
    async def main():
        fanout = LiveFanout()
        fanout.bind(asyncio.get_running_loop())
        queue = fanout.subscribe()
        assert fanout.subscriber_count == 1
        fanout.unsubscribe(queue)
        fanout.publish({"n": 1})
        await asyncio.sleep(0.05)
        return queue.empty(), fanout.subscriber_count

    assert asyncio.run(main()) == (True, 0)


def test_publish_without_loop_is_a_no_op():
    assert LiveFanout().publish({"n": 1}) is False
