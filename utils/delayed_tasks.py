"""Delayed task queue keyed by an owner id."""
import heapq
import itertools
import logging
import threading
from datetime import timedelta

logger = logging.getLogger("opswatch.tasks")


class DelayedTaskQueue:
    """Run callbacks once their due time passes; at most one pending task per key.

    Scheduling a key that already has a task replaces it. ``cancel(key)``
    drops the pending task. Nothing runs on its own: the owner calls
    ``run_due(now)`` (the monitoring loop does this every tick).
    """

    def __init__(self):
        self._heap = []
        self._live = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def schedule(self, key, due_at, callback):
        with self._lock:
            token = next(self._seq)
            self._live[key] = token
            heapq.heappush(self._heap, (due_at, token, key, callback))

    def schedule_in(self, key, now, seconds, callback):
        self.schedule(key, now + timedelta(seconds=seconds), callback)

    def cancel(self, key):
        with self._lock:
            return self._live.pop(key, None) is not None

    def pending(self, key):
        with self._lock:
            return key in self._live

    def __len__(self):
        with self._lock:
            return len(self._live)

    def run_due(self, now):
        """Run every live task due at or before ``now``; returns how many ran."""
        due = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                _, token, key, callback = heapq.heappop(self._heap)
                if self._live.get(key) != token:
                    continue
                del self._live[key]
                due.append((key, callback))

        for key, callback in due:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Delayed task {key} failed: {e}")
        return len(due)
