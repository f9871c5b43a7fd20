"""Dataclasses for decision rules, actions and their execution records."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from models.enums import (
    ActionType, ApprovalDecision, AutomationLevel, ConditionType, Operator, Outcome, TriggeredBy,
)


def _now():
    return datetime.now(timezone.utc)


@dataclass
class DecisionCondition:
    type: ConditionType = ConditionType.PREDICTION
    field: str = ""
    operator: str = Operator.EQ.value
    value: Any = None
    confidence: float = 0.0  # minimum event confidence

    def to_dict(self):
        return {
            "type": self.type.value,
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "confidence": self.confidence,
        }


@dataclass
class _ActionBase:
    type: ActionType = ActionType.NOTIFICATION
    parameters: dict = field(default_factory=dict)
    max_impact: float = 1.0
    rollbackable: bool = False

    def to_dict(self):
        return {
            "type": self.type.value,
            "parameters": dict(self.parameters),
            "automation_level": self.automation_level.value,
            "max_impact": self.max_impact,
            "rollbackable": self.rollbackable,
        }


@dataclass
class AutomatedAction(_ActionBase):
    """An action the executor may run without a human in the loop."""
    automation_level: AutomationLevel = AutomationLevel.FULLY_AUTOMATED

    def __post_init__(self):
        if self.automation_level == AutomationLevel.MANUAL_APPROVAL:
            raise ValueError("AutomatedAction cannot carry manual_approval; use ApprovalGatedAction")


@dataclass
class ApprovalGatedAction(_ActionBase):
    """An action that only runs after an approval step records a decision."""
    approvers: list = field(default_factory=list)

    @property
    def automation_level(self):
        return AutomationLevel.MANUAL_APPROVAL

    def to_dict(self):
        d = super().to_dict()
        d["approvers"] = list(self.approvers)
        return d


DecisionAction = Union[AutomatedAction, ApprovalGatedAction]


def build_action(type, parameters=None, automation_level="fully_automated",
                 max_impact=1.0, rollbackable=False, approvers=None):
    """Construct the right action class for an automation level."""
    level = AutomationLevel(automation_level)
    common = dict(
        type=ActionType(type),
        parameters=dict(parameters or {}),
        max_impact=float(max_impact),
        rollbackable=bool(rollbackable),
    )
    if level == AutomationLevel.MANUAL_APPROVAL:
        return ApprovalGatedAction(approvers=list(approvers or []), **common)
    return AutomatedAction(automation_level=level, **common)


@dataclass
class ActionResult:
    action_type: str = ""
    success: bool = False
    message: str = ""
    executed_at: datetime = field(default_factory=_now)
    impact: float = 0.0
    automation_level: str = AutomationLevel.FULLY_AUTOMATED.value
    deferred: bool = False
    data: Optional[dict] = None

    def to_dict(self):
        return {
            "action_type": self.action_type,
            "success": self.success,
            "message": self.message,
            "executed_at": self.executed_at.isoformat(),
            "impact": self.impact,
            "automation_level": self.automation_level,
            "deferred": self.deferred,
            "data": self.data,
        }


@dataclass
class Approval:
    approver_id: str = ""
    decision: ApprovalDecision = ApprovalDecision.PENDING
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self):
        return {
            "approver_id": self.approver_id,
            "decision": self.decision.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ExecutionImpact:
    positive: float = 0.0
    negative: float = 0.0
    overall: float = 0.0


@dataclass
class Rollback:
    executed_at: datetime = field(default_factory=_now)
    reason: str = ""
    success: bool = False


@dataclass
class DecisionExecution:
    rule_id: str = ""
    id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")
    triggered_at: datetime = field(default_factory=_now)
    triggered_by: TriggeredBy = TriggeredBy.SYSTEM
    conditions: list = field(default_factory=list)
    actions_executed: list = field(default_factory=list)
    outcome: Outcome = Outcome.PENDING
    impact: ExecutionImpact = field(default_factory=ExecutionImpact)
    approvals: list = field(default_factory=list)
    rollback: Optional[Rollback] = None
    event: Optional[dict] = None

    def to_dict(self):
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "triggered_at": self.triggered_at.isoformat(),
            "triggered_by": self.triggered_by.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions_executed": [a.to_dict() for a in self.actions_executed],
            "outcome": self.outcome.value,
            "impact": {
                "positive": self.impact.positive,
                "negative": self.impact.negative,
                "overall": self.impact.overall,
            },
            "approvals": [a.to_dict() for a in self.approvals],
            "rollback": None if self.rollback is None else {
                "executed_at": self.rollback.executed_at.isoformat(),
                "reason": self.rollback.reason,
                "success": self.rollback.success,
            },
        }


@dataclass
class DecisionRule:
    id: str = ""
    name: str = ""
    description: str = ""
    conditions: list = field(default_factory=list)
    actions: list = field(default_factory=list)
    priority: int = 5
    enabled: bool = True
    approval_required: bool = False
    approvers: list = field(default_factory=list)
    execution_history: list = field(default_factory=list)

    def to_dict(self, include_history=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "priority": self.priority,
            "enabled": self.enabled,
            "approval_required": self.approval_required,
            "approvers": list(self.approvers),
            "execution_count": len(self.execution_history),
        }
        if include_history:
            d["execution_history"] = [e.to_dict() for e in self.execution_history]
        return d
