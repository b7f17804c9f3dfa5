import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]


class EventChannel:
    """
    Publish/subscribe scoped to one print dialog.

    Replaces app-wide refresh hooks: only holders of this channel can publish
    to or listen on it, and closing it drops every subscriber.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self.closed = False

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        if self.closed:
            raise RuntimeError("Cannot subscribe to a closed channel")
        self._subscribers[topic].append(callback)

        def unsubscribe():
            if callback in self._subscribers.get(topic, []):
                self._subscribers[topic].remove(callback)

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> int:
        """Deliver `payload` to the topic's subscribers; returns how many were called."""
        if self.closed:
            return 0
        callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            callback(payload)
        return len(callbacks)

    def close(self):
        self.closed = True
        self._subscribers.clear()


class PrintSession:
    """
    Lifetime of one print dialog.

    In-flight fetch/render tasks register here; `close()` cancels them so
    nothing finishes into a dialog that no longer exists.
    """

    def __init__(self, dialog_id: str = "labels"):
        self.dialog_id = dialog_id
        self.channel = EventChannel()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return not self.channel.closed

    def track(self, task: asyncio.Task) -> asyncio.Task:
        if not self.active:
            task.cancel()
            return task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def publish(self, topic: str, payload: Any = None) -> int:
        return self.channel.publish(topic, payload)

    def close(self):
        if not self.active:
            return
        logger.info("Closing print session %s (%s tasks in flight)", self.dialog_id, len(self._tasks))
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.channel.close()
