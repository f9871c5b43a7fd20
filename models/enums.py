"""Enums for metrics, alerts, decisions, workflows and notification channels."""
from enum import Enum


class MetricCategory(str, Enum):
    SYSTEM = "system"
    BUSINESS = "business"
    USER = "user"
    PERFORMANCE = "performance"


class MetricKind(str, Enum):
    GAUGE = "gauge"
    COUNTER = "counter"
    HISTOGRAM = "histogram"
    RATE = "rate"
    BOOLEAN = "boolean"


class ThresholdDirection(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


class AlertKind(str, Enum):
    THRESHOLD = "threshold"
    ANOMALY = "anomaly"
    PREDICTION = "prediction"
    CORRELATION = "correlation"
    SYSTEM = "system"


class ConditionType(str, Enum):
    PREDICTION = "prediction"
    ANOMALY = "anomaly"
    THRESHOLD = "threshold"
    CORRELATION = "correlation"
    TIME = "time"


class Operator(str, Enum):
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"
    IN = "in"


class ActionType(str, Enum):
    NOTIFICATION = "notification"
    ESCALATION = "escalation"
    RESOURCE_ALLOCATION = "resource_allocation"
    WORKFLOW_TRIGGER = "workflow_trigger"
    PREVENTIVE_MEASURE = "preventive_measure"


class AutomationLevel(str, Enum):
    FULLY_AUTOMATED = "fully_automated"
    SEMI_AUTOMATED = "semi_automated"
    MANUAL_APPROVAL = "manual_approval"


class TriggeredBy(str, Enum):
    SYSTEM = "system"
    USER = "user"
    PREDICTION = "prediction"
    ANOMALY = "anomaly"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"
    PENDING = "pending"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"


class TriggerType(str, Enum):
    PREDICTION = "prediction"
    ANOMALY = "anomaly"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    THRESHOLD = "threshold"
    EVENT = "event"


class StepType(str, Enum):
    CONDITION = "condition"
    ACTION = "action"
    APPROVAL = "approval"
    NOTIFICATION = "notification"
    DELAY = "delay"


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    WAITING_DELAY = "waiting_delay"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self):
        return self in (RunState.COMPLETED, RunState.ABORTED)


class DeliveryFrequency(str, Enum):
    IMMEDIATE = "immediate"
    BATCHED = "batched"
    DIGEST = "digest"


class TransportKind(str, Enum):
    CONSOLE = "console"
    FILE = "file"
    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"
