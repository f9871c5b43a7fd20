"""MonitoringEngine - owns every component and runs the monitoring and decision passes."""
import logging
import threading

from alerts.manager import AlertManager
from automation.engine import DecisionRuleEngine
from automation.executor import ActionExecutor
from automation.rules_manager import AutomationRulesManager
from automation.workflows import WorkflowEngine
from config import DEFAULT_RULES_PATH
from models.alerts import Alert, AlertContext, AlertSource, AutoResolution
from models.enums import AlertKind, DeliveryFrequency, Severity
from monitor.feeds import build_event_feed
from monitor.registry import MetricRegistry
from monitor.scheduler import MonitorScheduler
from monitor.sources import MetricUnavailable, build_metric_source
from monitor.thresholds import ThresholdEvaluator
from notifications.router import NotificationRouter
from utils.clock import utc_now
from utils.delayed_tasks import DelayedTaskQueue
from utils.event_bus import EventBus

logger = logging.getLogger("opswatch.monitor")

ANOMALY_SEVERITY = {
    "low": Severity.INFO,
    "medium": Severity.WARNING,
    "high": Severity.CRITICAL,
    "critical": Severity.CRITICAL,
}

MAX_PENDING_ANOMALIES = 500


def anomaly_alert(event):
    """Alert candidate for an anomaly reported by the feed."""
    baseline = event.baseline
    return Alert(
        severity=ANOMALY_SEVERITY.get(event.severity, Severity.WARNING),
        kind=AlertKind.ANOMALY,
        title=f"Anomaly Detected: {event.entity_type}",
        description=event.description,
        source=AlertSource(component="anomaly_detection", entity_type=event.entity_type,
                           entity_id=event.entity_id),
        context=AlertContext(
            current_value=baseline.actual_value,
            threshold=baseline.expected_value,
            trend=f"{baseline.deviation} standard deviations" if baseline.deviation is not None else None,
        ),
        actionable=bool(event.recommendations),
        auto_resolution=AutoResolution(
            possible=event.automatable,
            confidence=event.confidence,
            actions=[r.action for r in event.recommendations],
        ),
    )


class MonitoringEngine:
    """Service object holding the registries and the periodic passes.

    Components are built in a fixed order: metrics, channels, rules, then
    workflows. ``run_tick`` refreshes metrics and alerts; ``process_decisions``
    evaluates rules and advances workflows. A pass that is already running is
    skipped rather than overlapped, and nothing raised inside a pass escapes.
    """

    def __init__(self, config, store=None, source=None, feed=None, clock=utc_now,
                 rules=None, workflows=None):
        self.config = config
        self.store = store
        self.clock = clock
        monitor_cfg = config.get("monitor", {})
        alerts_cfg = config.get("alerts", {})

        self.bus = EventBus()
        self.tasks = DelayedTaskQueue()
        self.source = source if source is not None else build_metric_source(monitor_cfg)
        self.feed = feed if feed is not None else build_event_feed(monitor_cfg)

        self.metrics = MetricRegistry(self.bus, clock=clock, history_cap=monitor_cfg.get("history_cap", 100))
        self.metrics.load_defaults(config.get("metrics", []))

        self.router = NotificationRouter.from_config(config.get("channels", []), clock=clock)

        self.alerts = AlertManager.from_config(alerts_cfg, bus=self.bus, store=store, tasks=self.tasks, clock=clock)
        self.thresholds = ThresholdEvaluator(self.alerts, clear_on_recovery=alerts_cfg.get("clear_on_recovery", False))

        self.executor = ActionExecutor(self.bus, self.router, clock=clock)
        self.workflows = WorkflowEngine(self.executor, self.router, self.bus, store, clock=clock)
        self.executor.workflows = self.workflows
        self.decisions = DecisionRuleEngine(self.executor, self.workflows, self.bus, store, clock=clock)

        if rules is None or workflows is None:
            rules_path = config.get("automation", {}).get("rules_path") or DEFAULT_RULES_PATH
            manager = AutomationRulesManager(rules_path)
            rules = manager.rules if rules is None else rules
            workflows = manager.workflows if workflows is None else workflows
        self.decisions.load_rules(rules)
        self.workflows.load(workflows)

        self.scheduler = None
        self.last_update = None
        self._recent_anomalies = []
        self._anomaly_lock = threading.Lock()
        self._tick_busy = threading.Lock()
        self._decision_busy = threading.Lock()

    # --- Lifecycle ---

    def start(self):
        if self.scheduler is None:
            monitor_cfg = self.config.get("monitor", {})
            self.scheduler = MonitorScheduler(
                self,
                tick_interval=monitor_cfg.get("tick_interval", 5),
                decision_interval=monitor_cfg.get("decision_interval", 60),
                digest_interval=monitor_cfg.get("digest_interval", 3600),
            )
        self.scheduler.start()

    def stop(self):
        if self.scheduler is not None:
            self.scheduler.stop()

    @property
    def running(self):
        return self.scheduler is not None and self.scheduler.running

    # --- Monitoring pass ---

    def run_tick(self):
        """One monitoring pass. Returns False if skipped because a pass was in flight."""
        if not self._tick_busy.acquire(blocking=False):
            logger.debug("Tick skipped: previous tick still running")
            return False
        try:
            self._tick()
        except Exception as e:
            logger.error(f"Monitoring tick failed: {e}", exc_info=True)
        finally:
            self._tick_busy.release()
        return True

    def _tick(self):
        now = self.clock()
        self.refresh_metrics(now)
        self.thresholds.check(self.metrics.list())
        self.poll_anomalies()
        self.alerts.sweep_expired(now)
        self.tasks.run_due(now)
        self.dispatch_pending()
        self.last_update = now

    def refresh_metrics(self, now=None):
        """Read every metric from the source; a failed read keeps the previous value."""
        now = now or self.clock()
        updated = 0
        for metric_id in self.metrics.ids():
            try:
                value = self.source.read(metric_id)
            except MetricUnavailable:
                continue
            except Exception as e:
                logger.warning(f"Metric source failed for {metric_id}: {e}")
                continue
            if self.update_metric(metric_id, value, now) is not None:
                updated += 1
        return updated

    def update_metric(self, metric_id, value, at=None):
        snapshot = self.metrics.update(metric_id, value, at)
        if snapshot is not None and self.store is not None:
            try:
                self.store.save_metric_snapshot(snapshot)
            except Exception as e:
                logger.warning(f"Failed to persist metric {metric_id}: {e}")
        return snapshot

    def poll_anomalies(self):
        """Raise alerts for feed anomalies and queue new ones for the decision pass.

        An anomaly that folds into an already open alert is not queued again,
        so a feed that keeps reporting the same anomaly fires its rules once.
        """
        try:
            events = self.feed.fetch_anomalies()
        except Exception as e:
            logger.warning(f"Anomaly feed unavailable: {e}")
            return []
        raised = []
        fresh = []
        for event in events:
            candidate = anomaly_alert(event)
            alert = self.alerts.raise_alert(candidate)
            raised.append(alert)
            # duplicates come back under the open alert's id
            if alert.id == candidate.id:
                fresh.append(event)
        self._queue_anomalies(fresh)
        return raised

    def _queue_anomalies(self, events):
        if not events:
            return
        with self._anomaly_lock:
            self._recent_anomalies.extend(events)
            overflow = len(self._recent_anomalies) - MAX_PENDING_ANOMALIES
            if overflow > 0:
                del self._recent_anomalies[:overflow]
        if overflow > 0:
            logger.warning(f"Dropped {overflow} anomaly event(s) waiting for a decision pass")

    def _take_anomalies(self):
        with self._anomaly_lock:
            events, self._recent_anomalies = self._recent_anomalies, []
        return events

    def dispatch_pending(self):
        sent = 0
        for alert in self.alerts.drain_pending():
            self.router.dispatch(alert)
            sent += 1
        return sent

    # --- Decision pass ---

    def process_decisions(self):
        """One decision pass. Returns the executions, or None if skipped."""
        if not self._decision_busy.acquire(blocking=False):
            logger.debug("Decision pass skipped: previous pass still running")
            return None
        try:
            return self._decide()
        except Exception as e:
            logger.error(f"Decision pass failed: {e}", exc_info=True)
            return []
        finally:
            self._decision_busy.release()

    def _decide(self):
        try:
            predictions = self.feed.fetch_predictions()
        except Exception as e:
            logger.warning(f"Prediction feed unavailable: {e}")
            predictions = []
        anomalies = self._take_anomalies()

        executions = []
        for event in list(predictions) + list(anomalies):
            event_executions = self.decisions.process_events(
                predictions=[event] if event.kind == "prediction" else [],
                anomalies=[event] if event.kind == "anomaly" else [],
            )
            executions.extend(event_executions)
            self.workflows.match_event(event, exclude=self._workflows_started_by(event_executions))

        self.workflows.advance(self.clock())
        self.router.flush(DeliveryFrequency.BATCHED)
        if executions:
            logger.info(f"Decision pass: {len(executions)} execution(s)")
        return executions

    def _workflows_started_by(self, executions):
        started = set()
        for execution in executions:
            for result in execution.actions_executed:
                run_id = (result.data or {}).get("run_id")
                run = self.workflows.get_run(run_id) if run_id else None
                if run is not None:
                    started.add(run.workflow_id)
        return started

    def flush_digest(self):
        return self.router.flush(DeliveryFrequency.DIGEST)

    # --- Consumer API ---

    def get_metrics(self):
        return self.metrics.list()

    def get_alerts(self):
        return self.alerts.get_alerts()

    def get_monitoring_status(self):
        return {
            "running": self.running,
            "metric_count": len(self.metrics),
            "open_alert_count": self.alerts.open_count(),
            "enabled_channel_count": self.router.enabled_count(),
            "last_update": self.last_update.isoformat() if self.last_update else None,
        }

    def acknowledge_alert(self, alert_id, user_id, reason=None):
        return self.alerts.acknowledge(alert_id, user_id, reason)

    def resolve_alert(self, alert_id, user_id, text, effectiveness=None):
        return self.alerts.resolve(alert_id, user_id, text, effectiveness)

    def subscribe(self, topic, handler):
        self.bus.subscribe(topic, handler)

    def unsubscribe(self, topic, handler):
        self.bus.unsubscribe(topic, handler)

    def get_automation_stats(self):
        return self.decisions.get_automation_stats()

    def approve_execution(self, execution_id, approver_id, approve, reason=None):
        return self.decisions.approve_execution(execution_id, approver_id, approve, reason)

    def record_workflow_approval(self, run_id, approver_id, approve, reason=None):
        return self.workflows.record_approval(run_id, approver_id, approve, reason)
