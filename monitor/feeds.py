"""Prediction and anomaly feeds consumed by the monitoring loop."""
import logging
import threading
from typing import Protocol, runtime_checkable

from models.events import AnomalyEvent, PredictionEvent
from utils.http_client import HTTPClient

logger = logging.getLogger("opswatch.feeds")


@runtime_checkable
class EventFeed(Protocol):
    def fetch_predictions(self) -> list: ...

    def fetch_anomalies(self) -> list: ...


def parse_events(items, event_cls):
    """Build events from raw mappings, skipping ones that cannot be parsed."""
    events = []
    for item in items or []:
        if isinstance(item, event_cls):
            events.append(item)
            continue
        try:
            events.append(event_cls.from_dict(item))
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed {event_cls.kind} event: {e}")
    return events


class InMemoryEventFeed:
    """Queue-backed feed; each fetch hands out what was pushed since the last one."""

    def __init__(self, predictions=(), anomalies=()):
        self._predictions = list(predictions)
        self._anomalies = list(anomalies)
        self._lock = threading.Lock()

    def push_prediction(self, event):
        with self._lock:
            self._predictions.extend(parse_events([event], PredictionEvent))

    def push_anomaly(self, event):
        with self._lock:
            self._anomalies.extend(parse_events([event], AnomalyEvent))

    def fetch_predictions(self):
        with self._lock:
            events, self._predictions = self._predictions, []
            return events

    def fetch_anomalies(self):
        with self._lock:
            events, self._anomalies = self._anomalies, []
            return events


class HTTPEventFeed:
    """Feed served by the predictive-analytics service over HTTP."""

    def __init__(self, client, predictions_path="/api/intelligence/predictions",
                 anomalies_path="/api/intelligence/anomalies"):
        self.client = client
        self.predictions_path = predictions_path
        self.anomalies_path = anomalies_path

    @classmethod
    def from_config(cls, feed_cfg):
        client = HTTPClient(feed_cfg["base_url"], timeout=feed_cfg.get("timeout", 10),
                            token=feed_cfg.get("token"))
        return cls(
            client,
            predictions_path=feed_cfg.get("predictions_path", "/api/intelligence/predictions"),
            anomalies_path=feed_cfg.get("anomalies_path", "/api/intelligence/anomalies"),
        )

    def _fetch(self, path, key):
        data = self.client.get(path)
        if isinstance(data, dict):
            data = data.get(key, [])
        return data if isinstance(data, list) else []

    def fetch_predictions(self):
        return parse_events(self._fetch(self.predictions_path, "predictions"), PredictionEvent)

    def fetch_anomalies(self):
        return parse_events(self._fetch(self.anomalies_path, "anomalies"), AnomalyEvent)


def build_event_feed(monitor_cfg):
    feed_cfg = monitor_cfg.get("feed", {})
    if feed_cfg.get("base_url"):
        return HTTPEventFeed.from_config(feed_cfg)
    return InMemoryEventFeed()
