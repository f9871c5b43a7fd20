"""Shared test fixtures."""
import os
import sys
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timedelta, timezone

from config import load_config
from models.database import AuditStore
from monitor.engine import MonitoringEngine
from monitor.feeds import InMemoryEventFeed
from monitor.sources import CallableSource
from utils.event_bus import EventBus


class FakeClock:
    """Deterministic clock; call it for the current time, advance() to move it."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def temp_db():
    """Create a temporary audit store for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = AuditStore(db_path)
    db.connect()
    yield db
    db.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    """Collects (topic, payload) for everything published on the bus."""
    events = []
    bus.subscribe("*", lambda payload, topic: events.append((topic, payload)))
    return events


@pytest.fixture
def config(tmp_path):
    """Default config with notifications going to a temp JSONL file only."""
    cfg = load_config()
    cfg["channels"] = [{
        "id": "alert_log",
        "name": "Alert Log",
        "transport": "file",
        "enabled": True,
        "configuration": {"log_path": str(tmp_path / "alerts.jsonl")},
        "filters": [{
            "severity": ["info", "warning", "critical", "emergency"],
            "types": ["threshold", "anomaly", "prediction", "correlation", "system"],
            "sources": ["monitoring", "anomaly_detection", "automation"],
            "frequency": "immediate",
        }],
    }]
    cfg["database"]["path"] = str(tmp_path / "opswatch.db")
    return cfg


@pytest.fixture
def source():
    return CallableSource()


@pytest.fixture
def feed():
    return InMemoryEventFeed()


@pytest.fixture
def make_engine(config, source, feed, clock):
    """Factory for a MonitoringEngine wired to in-memory source, feed and fake clock."""
    def _make(store=None, **kwargs):
        kwargs.setdefault("source", source)
        kwargs.setdefault("feed", feed)
        kwargs.setdefault("clock", clock)
        return MonitoringEngine(config, store=store, **kwargs)
    return _make


@pytest.fixture
def prediction_payload():
    """A high-confidence issue emergence prediction as the feed delivers it."""
    return {
        "entityType": "cluster",
        "entityId": "cluster-7",
        "confidence": 0.9,
        "description": "Issue emergence predicted in cluster-7",
        "prediction": {"outcome": "emergence", "probability": 0.85, "severity": "high"},
        "targetEntity": {"type": "cluster", "id": "cluster-7"},
        "recommendations": [{"action": "Increase monitoring", "automation": {"canAutomate": True}}],
    }


@pytest.fixture
def anomaly_payload():
    return {
        "entity_type": "system",
        "entity_id": "db-primary",
        "severity": "high",
        "confidence": 0.9,
        "description": "Query latency 4 standard deviations above baseline",
        "baseline": {"expected_value": 120, "actual_value": 480, "deviation": 4},
        "recommendations": [{"action": "Restart connection pool", "can_automate": True}],
    }
