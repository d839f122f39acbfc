import queue
import logging
import threading
from typing import Callable, Generic, Iterator, List, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription(Generic[T]):
    """
    A queue-backed subscription to an `EventChannel`.

    Events are buffered in arrival order until consumed with `get()` or by
    iterating. Iteration stops once the subscription is closed and drained.
    """
    _CLOSED = object()

    def __init__(self, channel: "EventChannel[T]", maxsize: int = 0) -> None:
        self._channel = channel
        self._queue: "queue.Queue" = queue.Queue(maxsize)
        self._closed = False
        self._unsubscribe = channel.subscribe(self._put)

    def _put(self, event: T) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            log.warning(f"Subscription queue full; dropping event {event!r}")

    def get(self, timeout: Optional[float] = None) -> T:
        """
        Returns the next event.

        :param timeout: Seconds to wait; None waits forever.
        :raises queue.Empty: If no event arrived in time or the subscription is closed.
        """
        item = self._queue.get(timeout=timeout)
        if item is self._CLOSED:
            self._queue.put_nowait(self._CLOSED)
            raise queue.Empty
        return item

    def drain(self) -> List[T]:
        """Returns every event currently buffered without waiting."""
        items = []
        while True:
            try:
                items.append(self.get(timeout=0))
            except queue.Empty:
                return items

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        try:
            self._queue.put_nowait(self._CLOSED)
        except queue.Full:
            log.debug(f"Subscription to '{self._channel.name}' closed with a full queue")

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                yield self.get()
            except queue.Empty:
                return

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventChannel(Generic[T]):
    """
    Thread-safe publish/subscribe channel.

    Callbacks run synchronously on the publishing thread, in subscription
    order, so a single publisher's events reach every subscriber in the order
    they were published. A failing subscriber is logged and skipped.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Registers a callback.

        :param callback: Called with every published event.
        :return: A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def listen(self, maxsize: int = 0) -> Subscription[T]:
        """Returns a queue-backed subscription; close it when done."""
        return Subscription(self, maxsize)

    def publish(self, event: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                log.error(f"Subscriber {callback!r} of channel '{self.name}' failed: {e}", exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
