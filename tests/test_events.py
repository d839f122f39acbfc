import queue
import threading

import pytest

from myterm.local.supervisor.events import EventChannel


@pytest.mark.basic
def test_callbacks_receive_events_in_publish_order():
    channel = EventChannel("test")
    seen = []
    channel.subscribe(seen.append)
    for i in range(100):
        channel.publish(i)
    assert seen == list(range(100))


@pytest.mark.basic
def test_unsubscribe_stops_delivery():
    channel = EventChannel("test")
    seen = []
    unsubscribe = channel.subscribe(seen.append)
    channel.publish("a")
    unsubscribe()
    unsubscribe()
    channel.publish("b")
    assert seen == ["a"]
    assert len(channel) == 0


@pytest.mark.basic
def test_failing_subscriber_does_not_break_others():
    channel = EventChannel("test")
    seen = []

    def broken(_):
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    channel.publish(1)
    channel.publish(2)
    assert seen == [1, 2]


@pytest.mark.basic
def test_subscription_queue_get_drain_and_close():
    channel = EventChannel("test")
    sub = channel.listen()
    channel.publish("x")
    channel.publish("y")
    assert sub.get(timeout=1) == "x"
    assert sub.drain() == ["y"]
    with pytest.raises(queue.Empty):
        sub.get(timeout=0.01)

    sub.close()
    channel.publish("ignored")
    with pytest.raises(queue.Empty):
        sub.get(timeout=0.01)
    assert len(channel) == 0


@pytest.mark.basic
def test_subscription_iteration_ends_on_close():
    channel = EventChannel("test")
    collected = []

    with channel.listen() as sub:
        consumer = threading.Thread(target=lambda: collected.extend(sub))
        consumer.start()
        for i in range(5):
            channel.publish(i)
    consumer.join(timeout=2)
    assert not consumer.is_alive()
    assert collected == [0, 1, 2, 3, 4]


@pytest.mark.basic
def test_bounded_subscription_drops_when_full():
    channel = EventChannel("test")
    sub = channel.listen(maxsize=2)
    for i in range(5):
        channel.publish(i)
    assert sub.drain() == [0, 1]
