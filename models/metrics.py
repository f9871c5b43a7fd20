"""Dataclasses for monitored operational metrics."""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.enums import MetricCategory, MetricKind, ThresholdDirection, TrendDirection

DEFAULT_HISTORY_CAP = 100


@dataclass
class MetricSample:
    timestamp: datetime
    value: float
    metadata: dict = field(default_factory=dict)

    def to_dict(self):
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}


@dataclass
class Threshold:
    warning: float = 0.0
    critical: float = 0.0
    direction: ThresholdDirection = ThresholdDirection.ABOVE

    def value_for(self, level):
        """Threshold value for a severity level name ('warning' or 'critical')."""
        level = level.value if hasattr(level, "value") else str(level)
        return self.critical if level == "critical" else self.warning


@dataclass
class Trend:
    direction: TrendDirection = TrendDirection.STABLE
    velocity: float = 0.0
    acceleration: float = 0.0


@dataclass
class Metric:
    id: str = ""
    name: str = ""
    description: str = ""
    kind: MetricKind = MetricKind.GAUGE
    category: MetricCategory = MetricCategory.SYSTEM
    current_value: float = 0.0
    previous_value: float = 0.0
    threshold: Threshold = field(default_factory=Threshold)
    trend: Trend = field(default_factory=Trend)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    history_cap: int = DEFAULT_HISTORY_CAP
    history: deque = None

    def __post_init__(self):
        if self.history is None:
            self.history = deque(maxlen=self.history_cap)
        elif not isinstance(self.history, deque) or self.history.maxlen != self.history_cap:
            self.history = deque(self.history, maxlen=self.history_cap)

    def to_dict(self, history_limit: Optional[int] = None):
        samples = list(self.history)
        if history_limit is not None:
            samples = samples[-history_limit:] if history_limit > 0 else []
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "kind": self.kind.value,
            "category": self.category.value,
            "current_value": self.current_value,
            "previous_value": self.previous_value,
            "threshold": {
                "warning": self.threshold.warning,
                "critical": self.threshold.critical,
                "direction": self.threshold.direction.value,
            },
            "trend": {
                "direction": self.trend.direction.value,
                "velocity": self.trend.velocity,
                "acceleration": self.trend.acceleration,
            },
            "last_updated": self.last_updated.isoformat(),
            "history": [s.to_dict() for s in samples],
        }

    @classmethod
    def from_config(cls, d, history_cap=DEFAULT_HISTORY_CAP):
        """Build a metric from a config mapping (see default_config.yaml `metrics`)."""
        threshold = d.get("threshold", {})
        trend = d.get("trend", {})
        return cls(
            id=d["id"],
            name=d.get("name", d["id"]),
            description=d.get("description", ""),
            kind=MetricKind(d.get("kind", "gauge")),
            category=MetricCategory(d.get("category", "system")),
            current_value=float(d.get("current_value", 0)),
            previous_value=float(d.get("previous_value", 0)),
            threshold=Threshold(
                warning=float(threshold.get("warning", 0)),
                critical=float(threshold.get("critical", 0)),
                direction=ThresholdDirection(threshold.get("direction", "above")),
            ),
            trend=Trend(
                direction=TrendDirection(trend.get("direction", "stable")),
                velocity=float(trend.get("velocity", 0)),
                acceleration=float(trend.get("acceleration", 0)),
            ),
            history_cap=int(d.get("history_cap", history_cap)),
        )
