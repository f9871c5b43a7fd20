"""Alert lifecycle: creation with deduplication, acknowledgement, resolution, expiry."""
import copy
import logging
import threading
from datetime import timedelta

from utils.clock import utc_now
from utils.delayed_tasks import DelayedTaskQueue

logger = logging.getLogger("opswatch.alerts")

DEFAULT_DEDUP_WINDOW = 300
DEFAULT_AUTO_RESOLVE_DELAY = 30
DEFAULT_AUTO_RESOLVE_CONFIDENCE = 0.8

_MIN_STEP = timedelta(microseconds=1)


class AlertManager:
    """Owner of the alert table.

    At most one open alert exists per (source entity id, kind) inside the
    dedup window; a duplicate raise bumps ``updated_at`` on the existing alert.
    Resolved and expired alerts are never mutated again. Expired alerts leave
    the table and are kept in ``history()``.
    """

    def __init__(self, bus=None, store=None, tasks=None, clock=utc_now,
                 dedup_window=DEFAULT_DEDUP_WINDOW,
                 auto_resolve_delay=DEFAULT_AUTO_RESOLVE_DELAY,
                 auto_resolve_confidence=DEFAULT_AUTO_RESOLVE_CONFIDENCE,
                 default_ttl_minutes=None):
        self.bus = bus
        self.store = store
        self.tasks = tasks if tasks is not None else DelayedTaskQueue()
        self.clock = clock
        self.dedup_window = timedelta(seconds=dedup_window)
        self.auto_resolve_delay = auto_resolve_delay
        self.auto_resolve_confidence = auto_resolve_confidence
        self.default_ttl = timedelta(minutes=default_ttl_minutes) if default_ttl_minutes else None
        self._alerts = {}
        self._history = []
        self._pending = []
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, alerts_cfg, bus=None, store=None, tasks=None, clock=utc_now):
        return cls(
            bus=bus, store=store, tasks=tasks, clock=clock,
            dedup_window=alerts_cfg.get("dedup_window_seconds", DEFAULT_DEDUP_WINDOW),
            auto_resolve_delay=alerts_cfg.get("auto_resolve_delay_seconds", DEFAULT_AUTO_RESOLVE_DELAY),
            auto_resolve_confidence=alerts_cfg.get("auto_resolve_confidence", DEFAULT_AUTO_RESOLVE_CONFIDENCE),
            default_ttl_minutes=alerts_cfg.get("default_ttl_minutes"),
        )

    # --- Raising ---

    def raise_alert(self, candidate):
        """Create an alert from a candidate, or refresh the open duplicate.

        Returns a copy of the stored alert (new or existing).
        """
        now = self.clock()
        with self._lock:
            existing = self._find_duplicate(candidate, now)
            if existing is not None:
                existing.updated_at = max(now, existing.updated_at + _MIN_STEP)
                logger.debug(f"Duplicate alert folded into {existing.id}")
                return copy.deepcopy(existing)

            alert = copy.deepcopy(candidate)
            alert.created_at = now
            alert.updated_at = now
            alert.acknowledgement.acknowledged = False
            alert.resolution.resolved = False
            alert.expired = False
            if alert.expires_at is None and self.default_ttl is not None:
                alert.expires_at = now + self.default_ttl
            self._alerts[alert.id] = alert
            self._pending.append(alert.id)
            snapshot = copy.deepcopy(alert)

        logger.info(f"Alert raised [{snapshot.severity.value}] {snapshot.title}")
        self._publish("alert:created", snapshot)
        self._persist(snapshot)

        auto = snapshot.auto_resolution
        if auto.possible and auto.confidence > self.auto_resolve_confidence:
            self.tasks.schedule_in(
                snapshot.id, now, self.auto_resolve_delay,
                lambda alert_id=snapshot.id: self.attempt_auto_resolution(alert_id),
            )
        return snapshot

    def _find_duplicate(self, candidate, now):
        key = candidate.dedup_key
        cutoff = now - self.dedup_window
        for alert in self._alerts.values():
            if alert.is_open and alert.dedup_key == key and alert.created_at > cutoff:
                return alert
        return None

    # --- Transitions ---

    def acknowledge(self, alert_id, user_id, reason=None):
        """Acknowledge an open alert. False if unknown, terminal or already acknowledged."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or not alert.is_open or alert.acknowledgement.acknowledged:
                return False
            now = self.clock()
            alert.acknowledgement.acknowledged = True
            alert.acknowledgement.by = user_id
            alert.acknowledgement.at = now
            alert.acknowledgement.reason = reason
            alert.updated_at = max(now, alert.updated_at + _MIN_STEP)
            snapshot = copy.deepcopy(alert)

        self.tasks.cancel(alert_id)
        self._publish("alert:acknowledged", snapshot)
        self._persist(snapshot)
        return True

    def resolve(self, alert_id, user_id, text, effectiveness=None):
        """Resolve an open alert. False if unknown, expired or already resolved."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or not alert.is_open:
                return False
            snapshot = self._resolve_locked(alert, user_id, text, effectiveness)

        self.tasks.cancel(alert_id)
        self._publish("alert:resolved", snapshot)
        self._persist(snapshot)
        return True

    def _resolve_locked(self, alert, user_id, text, effectiveness):
        now = self.clock()
        alert.resolution.resolved = True
        alert.resolution.by = user_id
        alert.resolution.at = now
        alert.resolution.text = text
        alert.resolution.effectiveness = effectiveness
        alert.updated_at = max(now, alert.updated_at + _MIN_STEP)
        return copy.deepcopy(alert)

    def attempt_auto_resolution(self, alert_id):
        """Resolve an alert as ``system`` unless someone got to it first."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or not alert.is_open or alert.acknowledgement.acknowledged:
                return False
            snapshot = self._resolve_locked(
                alert, "system", "Automatically resolved by system",
                alert.auto_resolution.confidence,
            )

        logger.info(f"Alert {alert_id} auto-resolved")
        self._publish("alert:resolved", snapshot)
        self._persist(snapshot)
        return True

    def sweep_expired(self, now=None):
        """Archive alerts whose expiry elapsed unresolved; returns the expired alerts."""
        now = now or self.clock()
        expired = []
        with self._lock:
            for alert_id, alert in list(self._alerts.items()):
                if alert.expires_at is None or alert.resolution.resolved:
                    continue
                if alert.expires_at < now:
                    alert.expired = True
                    del self._alerts[alert_id]
                    self._history.append(alert)
                    expired.append(copy.deepcopy(alert))

        for alert in expired:
            self.tasks.cancel(alert.id)
            self._publish("alert:expired", {"alert_id": alert.id, "alert": alert})
            self._persist(alert)
        if expired:
            logger.info(f"Expired {len(expired)} alert(s)")
        return expired

    # --- Reads ---

    def drain_pending(self):
        """Return alerts created since the last drain, each exactly once."""
        with self._lock:
            ids, self._pending = self._pending, []
            return [copy.deepcopy(self._alerts[i]) for i in ids if i in self._alerts]

    def get(self, alert_id):
        with self._lock:
            alert = self._alerts.get(alert_id)
            return copy.deepcopy(alert) if alert is not None else None

    def get_alerts(self, include_resolved=True):
        """All alerts in the table, newest first."""
        with self._lock:
            alerts = [a for a in self._alerts.values() if include_resolved or a.is_open]
            alerts = sorted(alerts, key=lambda a: a.created_at, reverse=True)
            return [copy.deepcopy(a) for a in alerts]

    def find_open(self, entity_id, kind):
        with self._lock:
            for alert in self._alerts.values():
                if alert.is_open and alert.dedup_key == (entity_id, kind):
                    return copy.deepcopy(alert)
        return None

    def open_count(self):
        with self._lock:
            return sum(1 for a in self._alerts.values() if a.is_open)

    def history(self):
        """Expired alerts, oldest first."""
        with self._lock:
            return [copy.deepcopy(a) for a in self._history]

    # --- Collaborators ---

    def _publish(self, topic, payload):
        if self.bus is not None:
            self.bus.publish(topic, payload)

    def _persist(self, alert):
        if self.store is None:
            return
        try:
            self.store.save_alert(alert)
        except Exception as e:
            logger.warning(f"Failed to persist alert {alert.id}: {e}")
