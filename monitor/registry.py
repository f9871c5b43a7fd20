"""Metric registry: holds the monitored metrics, their bounded history and trends."""
import copy
import logging
import threading

from models.enums import TrendDirection
from models.metrics import DEFAULT_HISTORY_CAP, Metric, MetricSample, Trend
from utils.clock import utc_now

logger = logging.getLogger("opswatch.metrics")

STABLE_VELOCITY = 0.1
TREND_WINDOW = 3


def compute_trend(samples, previous):
    """Recompute a trend from the last three samples.

    Velocity is the average change per sample across the window, acceleration
    the change in velocity since the previous trend. With fewer than three
    samples the previous trend is kept.
    """
    recent = list(samples)[-TREND_WINDOW:]
    if len(recent) < TREND_WINDOW:
        return copy.copy(previous)

    velocity = (recent[2].value - recent[0].value) / 2
    acceleration = velocity - previous.velocity
    if abs(velocity) < STABLE_VELOCITY:
        direction = TrendDirection.STABLE
    elif velocity > 0:
        direction = TrendDirection.INCREASING
    else:
        direction = TrendDirection.DECREASING
    return Trend(direction=direction, velocity=velocity, acceleration=acceleration)


class MetricRegistry:
    """Owner of all Metric records. Reads hand out deep copies."""

    def __init__(self, bus=None, clock=utc_now, history_cap=DEFAULT_HISTORY_CAP):
        self.bus = bus
        self.clock = clock
        self.history_cap = history_cap
        self._metrics = {}
        self._lock = threading.RLock()

    def register(self, metric):
        """Add a metric. Registering an id that already exists keeps the existing one."""
        with self._lock:
            existing = self._metrics.get(metric.id)
            if existing is not None:
                return copy.deepcopy(existing)
            metric = copy.deepcopy(metric)
            if not metric.history:
                metric.history.append(MetricSample(timestamp=metric.last_updated, value=metric.current_value))
            self._metrics[metric.id] = metric
            logger.debug(f"Registered metric {metric.id}")
            return copy.deepcopy(metric)

    def load_defaults(self, definitions):
        """Register metrics from config definitions; returns the number registered."""
        count = 0
        for d in definitions:
            try:
                metric = Metric.from_config(d, history_cap=self.history_cap)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid metric definition {d.get('id')}: {e}")
                continue
            metric.last_updated = self.clock()
            self.register(metric)
            count += 1
        logger.info(f"Loaded {count} metrics")
        return count

    def update(self, metric_id, value, at=None):
        """Record a new value. Returns a snapshot of the updated metric, or None if unknown."""
        with self._lock:
            metric = self._metrics.get(metric_id)
            if metric is None:
                logger.warning(f"Update for unknown metric: {metric_id}")
                return None

            at = at or self.clock()
            metric.previous_value = metric.current_value
            metric.current_value = float(value)
            metric.last_updated = at
            metric.history.append(MetricSample(timestamp=at, value=float(value)))
            metric.trend = compute_trend(metric.history, metric.trend)
            snapshot = copy.deepcopy(metric)

        if self.bus is not None:
            self.bus.publish(f"metric:{metric_id}", snapshot)
        return snapshot

    def get(self, metric_id):
        with self._lock:
            metric = self._metrics.get(metric_id)
            return copy.deepcopy(metric) if metric is not None else None

    def list(self):
        with self._lock:
            return [copy.deepcopy(m) for m in self._metrics.values()]

    def ids(self):
        with self._lock:
            return list(self._metrics)

    def __len__(self):
        with self._lock:
            return len(self._metrics)

    def __contains__(self, metric_id):
        with self._lock:
            return metric_id in self._metrics
