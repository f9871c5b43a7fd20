"""In-process publish/subscribe register keyed by topic string."""
import logging
import threading
from collections import defaultdict

logger = logging.getLogger("opswatch.events")

WILDCARD = "*"


class EventBus:
    """Synchronous fan-out of events to topic subscribers.

    Handlers run on the publisher's thread, in subscription order. A handler
    that raises is logged and skipped; the remaining handlers still run and
    ``publish`` always returns normally. Handlers subscribed to ``"*"``
    receive every topic as ``handler(payload, topic=topic)``.
    """

    def __init__(self):
        self._handlers = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic, handler):
        with self._lock:
            if handler not in self._handlers[topic]:
                self._handlers[topic].append(handler)

    def unsubscribe(self, topic, handler):
        with self._lock:
            handlers = self._handlers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[topic]

    def publish(self, topic, payload=None):
        """Deliver payload to all current handlers; returns the number that succeeded."""
        with self._lock:
            direct = list(self._handlers.get(topic, ()))
            wildcard = list(self._handlers.get(WILDCARD, ())) if topic != WILDCARD else []

        delivered = 0
        for handler in direct:
            delivered += self._call(handler, topic, payload)
        for handler in wildcard:
            delivered += self._call(handler, topic, payload, wildcard=True)
        return delivered

    def topics(self):
        with self._lock:
            return sorted(self._handlers)

    def subscriber_count(self, topic):
        with self._lock:
            return len(self._handlers.get(topic, ()))

    def _call(self, handler, topic, payload, wildcard=False):
        try:
            if wildcard:
                handler(payload, topic=topic)
            else:
                handler(payload)
            return 1
        except Exception as e:
            logger.warning(f"Subscriber error on '{topic}': {e}")
            return 0
