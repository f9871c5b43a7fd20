"""Dataclasses for automation workflows and their running instances."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.enums import RunState, StepType, TriggerType, WorkflowStatus


def _iso(value):
    return value.isoformat() if value is not None else None


@dataclass
class WorkflowTrigger:
    type: TriggerType = TriggerType.MANUAL
    conditions: list = field(default_factory=list)
    frequency: Optional[str] = None


@dataclass
class WorkflowStep:
    id: str = ""
    type: StepType = StepType.ACTION
    name: str = ""
    parameters: dict = field(default_factory=dict)
    on_success: Optional[str] = None
    on_failure: Optional[str] = None
    timeout: Optional[float] = None  # seconds

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "parameters": dict(self.parameters),
            "on_success": self.on_success,
            "on_failure": self.on_failure,
            "timeout": self.timeout,
        }


@dataclass
class WorkflowMetrics:
    total_executions: int = 0
    successful_executions: int = 0
    success_rate: float = 0.0
    average_execution_time: float = 0.0  # seconds
    last_execution: Optional[datetime] = None


@dataclass
class AutomationWorkflow:
    id: str = ""
    name: str = ""
    description: str = ""
    trigger: WorkflowTrigger = field(default_factory=WorkflowTrigger)
    steps: list = field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    metrics: WorkflowMetrics = field(default_factory=WorkflowMetrics)

    def step(self, step_id):
        for s in self.steps:
            if s.id == step_id:
                return s
        return None

    @property
    def entry_step(self):
        return self.steps[0] if self.steps else None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger": {
                "type": self.trigger.type.value,
                "conditions": list(self.trigger.conditions),
                "frequency": self.trigger.frequency,
            },
            "steps": [s.to_dict() for s in self.steps],
            "status": self.status.value,
            "metrics": {
                "total_executions": self.metrics.total_executions,
                "success_rate": self.metrics.success_rate,
                "average_execution_time": self.metrics.average_execution_time,
                "last_execution": _iso(self.metrics.last_execution),
            },
        }


@dataclass
class StepLogEntry:
    step_id: str
    step_type: str
    success: bool
    message: str = ""
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class WorkflowRun:
    workflow_id: str = ""
    id: str = field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    state: RunState = RunState.PENDING
    current_step: Optional[str] = None
    context: dict = field(default_factory=dict)
    trigger_type: TriggerType = TriggerType.MANUAL
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    step_log: list = field(default_factory=list)
    approvals: list = field(default_factory=list)

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "state": self.state.value,
            "current_step": self.current_step,
            "trigger_type": self.trigger_type.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": _iso(self.finished_at),
            "deadline": _iso(self.deadline),
            "step_log": [
                {"step_id": e.step_id, "step_type": e.step_type, "success": e.success,
                 "message": e.message, "at": e.at.isoformat()}
                for e in self.step_log
            ],
            "approvals": [a.to_dict() for a in self.approvals],
        }
