"""Tests for the alert manager lifecycle."""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from alerts.manager import AlertManager
from models.alerts import Alert, AlertSource, AutoResolution
from models.enums import AlertKind, Severity
from utils.delayed_tasks import DelayedTaskQueue


def _candidate(entity="cpu", kind=AlertKind.THRESHOLD, severity=Severity.WARNING,
               auto=False, confidence=0.0, title="CPU Threshold Exceeded"):
    return Alert(
        severity=severity, kind=kind, title=title,
        source=AlertSource(component="monitoring", entity_type="metric", entity_id=entity),
        auto_resolution=AutoResolution(possible=auto, confidence=confidence),
    )


@pytest.fixture
def tasks():
    return DelayedTaskQueue()


@pytest.fixture
def manager(bus, clock, tasks):
    return AlertManager(bus=bus, tasks=tasks, clock=clock, dedup_window=300)


# ── Raising and deduplication ─────────────────────────

class TestRaise:
    def test_new_alert_is_open_and_published(self, manager, recorder, clock):
        alert = manager.raise_alert(_candidate())
        assert alert.is_open
        assert alert.created_at == clock()
        assert manager.open_count() == 1
        assert [t for t, _ in recorder] == ["alert:created"]

    def test_duplicate_within_window_bumps_updated_at(self, manager, recorder, clock):
        first = manager.raise_alert(_candidate())
        clock.advance(60)
        second = manager.raise_alert(_candidate())
        assert second.id == first.id
        assert second.updated_at == clock()
        assert second.updated_at > first.updated_at
        assert manager.open_count() == 1
        assert [t for t, _ in recorder] == ["alert:created"]

    def test_duplicate_in_same_instant_still_moves_updated_at(self, manager):
        first = manager.raise_alert(_candidate())
        second = manager.raise_alert(_candidate())
        assert second.updated_at > first.updated_at

    def test_new_alert_after_window(self, manager, clock):
        first = manager.raise_alert(_candidate())
        clock.advance(301)
        second = manager.raise_alert(_candidate())
        assert second.id != first.id
        assert manager.open_count() == 2

    def test_different_kind_not_deduplicated(self, manager):
        manager.raise_alert(_candidate(kind=AlertKind.THRESHOLD))
        manager.raise_alert(_candidate(kind=AlertKind.ANOMALY))
        assert manager.open_count() == 2

    def test_resolved_alert_does_not_absorb_new_one(self, manager):
        first = manager.raise_alert(_candidate())
        manager.resolve(first.id, "alice", "fixed")
        second = manager.raise_alert(_candidate())
        assert second.id != first.id

    def test_drain_pending_once(self, manager):
        manager.raise_alert(_candidate("a"))
        manager.raise_alert(_candidate("a"))
        manager.raise_alert(_candidate("b"))
        drained = manager.drain_pending()
        assert [a.source.entity_id for a in drained] == ["a", "b"]
        assert manager.drain_pending() == []

    def test_store_failure_is_swallowed(self, bus, clock):
        store = MagicMock()
        store.save_alert.side_effect = RuntimeError("disk full")
        manager = AlertManager(bus=bus, store=store, clock=clock)
        alert = manager.raise_alert(_candidate())
        assert manager.get(alert.id) is not None

    def test_get_alerts_newest_first(self, manager, clock):
        manager.raise_alert(_candidate("a"))
        clock.advance(1)
        manager.raise_alert(_candidate("b"))
        assert [a.source.entity_id for a in manager.get_alerts()] == ["b", "a"]


# ── Acknowledge / resolve ─────────────────────────────

class TestTransitions:
    def test_acknowledge_once(self, manager, recorder):
        alert = manager.raise_alert(_candidate())
        assert manager.acknowledge(alert.id, "alice", "looking") is True
        assert manager.acknowledge(alert.id, "bob") is False
        stored = manager.get(alert.id)
        assert stored.acknowledgement.by == "alice"
        assert stored.acknowledgement.reason == "looking"
        assert [t for t, _ in recorder].count("alert:acknowledged") == 1

    def test_resolve_once(self, manager, recorder):
        alert = manager.raise_alert(_candidate())
        assert manager.resolve(alert.id, "alice", "restarted", 0.9) is True
        assert manager.resolve(alert.id, "bob", "again") is False
        stored = manager.get(alert.id)
        assert stored.resolution.by == "alice"
        assert stored.resolution.effectiveness == 0.9
        assert [t for t, _ in recorder].count("alert:resolved") == 1

    def test_acknowledge_resolved_fails(self, manager):
        alert = manager.raise_alert(_candidate())
        manager.resolve(alert.id, "alice", "done")
        assert manager.acknowledge(alert.id, "bob") is False

    def test_unknown_alert(self, manager):
        assert manager.acknowledge("alert_missing", "alice") is False
        assert manager.resolve("alert_missing", "alice", "x") is False

    def test_updated_at_strictly_increases(self, manager):
        alert = manager.raise_alert(_candidate())
        manager.acknowledge(alert.id, "alice")
        acked = manager.get(alert.id)
        manager.resolve(alert.id, "alice", "done")
        resolved = manager.get(alert.id)
        assert alert.updated_at < acked.updated_at < resolved.updated_at


# ── Auto-resolution ───────────────────────────────────

class TestAutoResolution:
    def test_confident_alert_auto_resolves_after_delay(self, manager, tasks, clock):
        alert = manager.raise_alert(_candidate(auto=True, confidence=0.9))
        assert tasks.pending(alert.id)
        tasks.run_due(clock.advance(29))
        assert manager.get(alert.id).is_open
        tasks.run_due(clock.advance(1))
        stored = manager.get(alert.id)
        assert stored.resolution.resolved is True
        assert stored.resolution.by == "system"
        assert stored.resolution.effectiveness == 0.9

    def test_confidence_at_threshold_not_scheduled(self, manager, tasks):
        alert = manager.raise_alert(_candidate(auto=True, confidence=0.8))
        assert not tasks.pending(alert.id)

    def test_not_possible_not_scheduled(self, manager, tasks):
        alert = manager.raise_alert(_candidate(auto=False, confidence=0.99))
        assert not tasks.pending(alert.id)

    def test_acknowledge_cancels_auto_resolution(self, manager, tasks, clock):
        alert = manager.raise_alert(_candidate(auto=True, confidence=0.95))
        manager.acknowledge(alert.id, "alice")
        assert not tasks.pending(alert.id)
        tasks.run_due(clock.advance(60))
        assert manager.get(alert.id).resolution.resolved is False

    def test_attempt_revalidates_state(self, manager):
        alert = manager.raise_alert(_candidate(auto=True, confidence=0.95))
        manager.resolve(alert.id, "alice", "manual fix")
        assert manager.attempt_auto_resolution(alert.id) is False
        assert manager.get(alert.id).resolution.by == "alice"


# ── Expiry ────────────────────────────────────────────

class TestExpiry:
    def test_expired_alert_moves_to_history(self, bus, clock, recorder):
        manager = AlertManager(bus=bus, clock=clock, default_ttl_minutes=10)
        alert = manager.raise_alert(_candidate())
        assert alert.expires_at == clock() + timedelta(minutes=10)

        assert manager.sweep_expired(clock.advance(600)) == []
        expired = manager.sweep_expired(clock.advance(1))
        assert [a.id for a in expired] == [alert.id]
        assert manager.get(alert.id) is None
        assert manager.history()[0].expired is True
        topics = [t for t, _ in recorder]
        assert "alert:expired" in topics
        payload = dict(recorder)["alert:expired"]
        assert payload["alert_id"] == alert.id

    def test_resolved_alert_never_expires(self, bus, clock):
        manager = AlertManager(bus=bus, clock=clock, default_ttl_minutes=1)
        alert = manager.raise_alert(_candidate())
        manager.resolve(alert.id, "alice", "done")
        assert manager.sweep_expired(clock.advance(3600)) == []
        assert manager.get(alert.id).resolution.resolved

    def test_expired_alert_cannot_be_resolved(self, bus, clock):
        manager = AlertManager(bus=bus, clock=clock, default_ttl_minutes=1)
        alert = manager.raise_alert(_candidate())
        manager.sweep_expired(clock.advance(120))
        assert manager.resolve(alert.id, "alice", "late") is False

    def test_no_ttl_by_default(self, manager):
        assert manager.raise_alert(_candidate()).expires_at is None


def test_from_config(clock, config):
    manager = AlertManager.from_config(config["alerts"], clock=clock)
    assert manager.dedup_window == timedelta(seconds=300)
    assert manager.auto_resolve_delay == 30
    assert manager.auto_resolve_confidence == 0.8
    assert manager.default_ttl is None
