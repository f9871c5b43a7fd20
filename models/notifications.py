"""Dataclasses for notification channels and their delivery filters."""
from dataclasses import dataclass, field
from datetime import time
from typing import Optional

from models.enums import DeliveryFrequency, TransportKind


def _parse_hhmm(text):
    hours, minutes = str(text).split(":")
    return time(int(hours), int(minutes))


@dataclass
class TimeRange:
    start: time
    end: time

    def contains(self, moment):
        """True if a time of day falls inside the range; ranges may wrap midnight."""
        if self.start <= self.end:
            return self.start <= moment <= self.end
        return moment >= self.start or moment <= self.end

    @classmethod
    def from_dict(cls, d):
        return cls(start=_parse_hhmm(d["start"]), end=_parse_hhmm(d["end"]))


@dataclass
class NotificationFilter:
    severities: list = field(default_factory=list)
    types: list = field(default_factory=list)
    sources: list = field(default_factory=list)
    time_range: Optional[TimeRange] = None
    frequency: DeliveryFrequency = DeliveryFrequency.IMMEDIATE

    def matches(self, alert, moment=None):
        if alert.severity.value not in self.severities:
            return False
        if alert.kind.value not in self.types:
            return False
        if alert.source.component not in self.sources:
            return False
        if self.time_range is not None and moment is not None:
            return self.time_range.contains(moment)
        return True

    @classmethod
    def from_dict(cls, d):
        tr = d.get("time_range")
        return cls(
            severities=list(d.get("severity", d.get("severities", []))),
            types=list(d.get("types", [])),
            sources=list(d.get("sources", [])),
            time_range=TimeRange.from_dict(tr) if tr else None,
            frequency=DeliveryFrequency(d.get("frequency", "immediate")),
        )


@dataclass
class NotificationChannel:
    id: str = ""
    name: str = ""
    transport: TransportKind = TransportKind.CONSOLE
    configuration: dict = field(default_factory=dict)
    enabled: bool = True
    filters: list = field(default_factory=list)

    def match(self, alert, moment=None):
        """Return the first filter matching the alert, or None."""
        for f in self.filters:
            if f.matches(alert, moment):
                return f
        return None

    @classmethod
    def from_dict(cls, d):
        return cls(
            id=d["id"],
            name=d.get("name", d["id"]),
            transport=TransportKind(d.get("transport", d.get("type", "console"))),
            configuration=dict(d.get("configuration", {})),
            enabled=bool(d.get("enabled", True)),
            filters=[NotificationFilter.from_dict(f) for f in d.get("filters", [])],
        )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "transport": self.transport.value,
            "enabled": self.enabled,
            "filters": [
                {
                    "severity": list(f.severities),
                    "types": list(f.types),
                    "sources": list(f.sources),
                    "frequency": f.frequency.value,
                }
                for f in self.filters
            ],
        }
