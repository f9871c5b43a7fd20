"""Threshold evaluation: classify metric values and raise threshold alerts."""
import logging

from models.alerts import Alert, AlertContext, AlertSource, AutoResolution
from models.enums import AlertKind, Severity, ThresholdDirection

logger = logging.getLogger("opswatch.thresholds")


def classify(value, threshold):
    """Return Severity.CRITICAL, Severity.WARNING or None for a value against a threshold.

    Boundaries are inclusive and the critical level is checked first.
    """
    if value is None:
        return None
    if threshold.direction == ThresholdDirection.ABOVE:
        if value >= threshold.critical:
            return Severity.CRITICAL
        if value >= threshold.warning:
            return Severity.WARNING
    else:
        if value <= threshold.critical:
            return Severity.CRITICAL
        if value <= threshold.warning:
            return Severity.WARNING
    return None


def build_threshold_alert(metric, level):
    crossed = metric.threshold.value_for(level)
    return Alert(
        severity=level,
        kind=AlertKind.THRESHOLD,
        title=f"{metric.name} Threshold Exceeded",
        description=f"{metric.name} is {metric.current_value:g} (threshold: {crossed:g})",
        source=AlertSource(component="monitoring", entity_type="metric", entity_id=metric.id),
        context=AlertContext(
            current_value=metric.current_value,
            threshold=crossed,
            trend=metric.trend.direction.value,
        ),
        actionable=True,
        auto_resolution=AutoResolution(possible=False, confidence=0.0),
    )


class ThresholdEvaluator:
    """Checks metric snapshots against their thresholds.

    With ``clear_on_recovery`` the evaluator resolves a metric's open threshold
    alert as ``system`` once its value is back inside bounds; otherwise closing
    threshold alerts is left to operators.
    """

    def __init__(self, alert_manager, clear_on_recovery=False):
        self.alert_manager = alert_manager
        self.clear_on_recovery = clear_on_recovery

    def check(self, metrics):
        """Evaluate every metric; returns the alerts raised (new or deduplicated)."""
        raised = []
        for metric in metrics:
            level = classify(metric.current_value, metric.threshold)
            if level is None:
                if self.clear_on_recovery:
                    self._clear(metric)
                continue
            alert = self.alert_manager.raise_alert(build_threshold_alert(metric, level))
            if alert is not None:
                raised.append(alert)
        return raised

    def _clear(self, metric):
        open_alert = self.alert_manager.find_open(metric.id, AlertKind.THRESHOLD)
        if open_alert is None:
            return
        resolved = self.alert_manager.resolve(
            open_alert.id, "system",
            f"{metric.name} recovered to {metric.current_value:g}",
        )
        if resolved:
            logger.info(f"Threshold alert {open_alert.id} cleared: {metric.id} back in bounds")
