"""Upstream prediction/anomaly events consumed by the decision engine.

The feed delivers two event kinds with a shared shape
``{entity_type, entity_id, severity, confidence, description, recommendations}``.
Each kind declares the dotted field paths a decision condition may reference,
so rule files are checked when loaded instead of failing at evaluation time.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union


@dataclass
class Recommendation:
    action: str = ""
    can_automate: bool = False

    @classmethod
    def from_dict(cls, d):
        if isinstance(d, str):
            return cls(action=d)
        automation = d.get("automation", {})
        return cls(
            action=d.get("action", ""),
            can_automate=bool(d.get("can_automate", d.get("canAutomate", automation.get("canAutomate", False)))),
        )


@dataclass
class Baseline:
    expected_value: Optional[float] = None
    actual_value: Optional[float] = None
    deviation: Optional[float] = None


def _get(d, snake, camel, default=None):
    if snake in d:
        return d[snake]
    return d.get(camel, default)


@dataclass
class _EventBase:
    entity_type: str = ""
    entity_id: str = ""
    severity: str = "low"
    confidence: float = 0.0
    description: str = ""
    recommendations: list = field(default_factory=list)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def _base_dict(self):
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "severity": self.severity,
            "confidence": self.confidence,
            "description": self.description,
            "recommendations": [
                {"action": r.action, "can_automate": r.can_automate} for r in self.recommendations
            ],
        }

    @property
    def automatable(self):
        return any(r.can_automate for r in self.recommendations)


@dataclass
class PredictionEvent(_EventBase):
    kind = "prediction"

    outcome: str = ""
    probability: float = 0.0
    target_entity_type: str = ""

    def to_dict(self):
        d = self._base_dict()
        d["prediction"] = {
            "outcome": self.outcome,
            "probability": self.probability,
            "severity": self.severity,
        }
        d["target_entity"] = {"type": self.target_entity_type or self.entity_type, "id": self.entity_id}
        return d

    @classmethod
    def from_dict(cls, d):
        prediction = d.get("prediction", {})
        target = _get(d, "target_entity", "targetEntity", {}) or {}
        return cls(
            entity_type=_get(d, "entity_type", "entityType", ""),
            entity_id=str(_get(d, "entity_id", "entityId", "")),
            severity=prediction.get("severity", d.get("severity", "low")),
            confidence=float(d.get("confidence", 0) or 0),
            description=d.get("description", ""),
            recommendations=[Recommendation.from_dict(r) for r in d.get("recommendations", [])],
            outcome=prediction.get("outcome", d.get("outcome", "")),
            probability=float(prediction.get("probability", d.get("probability", 0)) or 0),
            target_entity_type=target.get("type", ""),
        )


@dataclass
class AnomalyEvent(_EventBase):
    kind = "anomaly"

    baseline: Baseline = field(default_factory=Baseline)

    def to_dict(self):
        d = self._base_dict()
        d["baseline"] = {
            "expected_value": self.baseline.expected_value,
            "actual_value": self.baseline.actual_value,
            "deviation": self.baseline.deviation,
        }
        return d

    @classmethod
    def from_dict(cls, d):
        b = d.get("baseline", {}) or {}
        return cls(
            entity_type=_get(d, "entity_type", "entityType", ""),
            entity_id=str(_get(d, "entity_id", "entityId", "")),
            severity=d.get("severity", "low"),
            confidence=float(d.get("confidence", 0) or 0),
            description=d.get("description", ""),
            recommendations=[Recommendation.from_dict(r) for r in d.get("recommendations", [])],
            baseline=Baseline(
                expected_value=_get(b, "expected_value", "expectedValue"),
                actual_value=_get(b, "actual_value", "actualValue"),
                deviation=b.get("deviation"),
            ),
        )


UpstreamEvent = Union[PredictionEvent, AnomalyEvent]

_COMMON_FIELDS = {
    "entity_type", "entity_id", "severity", "confidence", "description", "recommendations",
}

PREDICTION_FIELDS = _COMMON_FIELDS | {
    "prediction.outcome", "prediction.probability", "prediction.severity",
    "target_entity.type", "target_entity.id",
}

ANOMALY_FIELDS = _COMMON_FIELDS | {
    "baseline.expected_value", "baseline.actual_value", "baseline.deviation",
}

FIELDS_BY_KIND = {
    PredictionEvent.kind: PREDICTION_FIELDS,
    AnomalyEvent.kind: ANOMALY_FIELDS,
}


def event_payload(event):
    """Return the dict view of an event (plain dicts pass through)."""
    if hasattr(event, "to_dict"):
        return event.to_dict()
    return event or {}
