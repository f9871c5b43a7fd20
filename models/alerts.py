"""Dataclasses for real-time alerts and their lifecycle records."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.enums import AlertKind, Severity


def new_alert_id():
    return f"alert_{uuid.uuid4().hex[:12]}"


def _iso(value):
    return value.isoformat() if value is not None else None


@dataclass
class AlertSource:
    component: str = "unknown"
    entity_type: str = "system"
    entity_id: str = "unknown"


@dataclass
class AlertContext:
    current_value: Optional[float] = None
    threshold: Optional[float] = None
    trend: Optional[str] = None
    related_alerts: list = field(default_factory=list)
    affected_entities: list = field(default_factory=list)


@dataclass
class AutoResolution:
    possible: bool = False
    confidence: float = 0.0
    estimated_minutes: Optional[int] = None
    actions: list = field(default_factory=list)


@dataclass
class Acknowledgement:
    acknowledged: bool = False
    by: Optional[str] = None
    at: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass
class Resolution:
    resolved: bool = False
    by: Optional[str] = None
    at: Optional[datetime] = None
    text: Optional[str] = None
    effectiveness: Optional[float] = None


@dataclass
class Alert:
    id: str = field(default_factory=new_alert_id)
    severity: Severity = Severity.INFO
    kind: AlertKind = AlertKind.SYSTEM
    title: str = "System Alert"
    description: str = ""
    source: AlertSource = field(default_factory=AlertSource)
    context: AlertContext = field(default_factory=AlertContext)
    actionable: bool = False
    auto_resolution: AutoResolution = field(default_factory=AutoResolution)
    acknowledgement: Acknowledgement = field(default_factory=Acknowledgement)
    resolution: Resolution = field(default_factory=Resolution)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None
    expired: bool = False

    @property
    def is_open(self):
        return not self.resolution.resolved and not self.expired

    @property
    def dedup_key(self):
        return (self.source.entity_id, self.kind)

    def to_dict(self):
        return {
            "id": self.id,
            "severity": self.severity.value,
            "type": self.kind.value,
            "title": self.title,
            "description": self.description,
            "source": {
                "component": self.source.component,
                "entity_type": self.source.entity_type,
                "entity_id": self.source.entity_id,
            },
            "context": {
                "current_value": self.context.current_value,
                "threshold": self.context.threshold,
                "trend": self.context.trend,
                "related_alerts": list(self.context.related_alerts),
                "affected_entities": list(self.context.affected_entities),
            },
            "actionable": self.actionable,
            "auto_resolution": {
                "possible": self.auto_resolution.possible,
                "confidence": self.auto_resolution.confidence,
                "estimated_minutes": self.auto_resolution.estimated_minutes,
                "actions": list(self.auto_resolution.actions),
            },
            "acknowledgement": {
                "acknowledged": self.acknowledgement.acknowledged,
                "by": self.acknowledgement.by,
                "at": _iso(self.acknowledgement.at),
                "reason": self.acknowledgement.reason,
            },
            "resolution": {
                "resolved": self.resolution.resolved,
                "by": self.resolution.by,
                "at": _iso(self.resolution.at),
                "text": self.resolution.text,
                "effectiveness": self.resolution.effectiveness,
            },
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "expires_at": _iso(self.expires_at),
            "expired": self.expired,
        }
