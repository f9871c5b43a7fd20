"""Data models."""
from models.enums import (
    MetricCategory, MetricKind, ThresholdDirection, TrendDirection, Severity, AlertKind,
    ConditionType, Operator, ActionType, AutomationLevel, TriggeredBy, Outcome,
    ApprovalDecision, WorkflowStatus, TriggerType, StepType, RunState,
    DeliveryFrequency, TransportKind,
)
from models.metrics import Metric, MetricSample, Threshold, Trend
from models.alerts import Alert, AlertSource, AlertContext, AutoResolution, Acknowledgement, Resolution
from models.events import PredictionEvent, AnomalyEvent, Recommendation, Baseline
from models.decisions import (
    DecisionCondition, AutomatedAction, ApprovalGatedAction, build_action, ActionResult,
    Approval, ExecutionImpact, Rollback, DecisionExecution, DecisionRule,
)
from models.workflows import WorkflowTrigger, WorkflowStep, WorkflowMetrics, AutomationWorkflow, WorkflowRun
from models.notifications import NotificationChannel, NotificationFilter, TimeRange
