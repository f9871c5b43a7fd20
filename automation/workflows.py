"""Workflow engine: validated step graphs and resumable runs.

A workflow is a directed graph of steps joined by success and failure edges.
Registration rejects graphs with dangling edges, unreachable steps or cycles.
A run walks the graph from the first step; approval and delay steps suspend
the run until ``record_approval`` or ``advance`` picks it up again.
"""
import copy
import logging
import threading
import uuid
from datetime import timedelta

from automation.conditions import all_hold
from models.decisions import Approval, AutomatedAction
from models.enums import (
    ActionType, ApprovalDecision, AutomationLevel, RunState, Severity, StepType, TriggerType,
    WorkflowStatus,
)
from models.events import event_payload
from models.workflows import AutomationWorkflow, StepLogEntry, WorkflowRun, WorkflowStep, WorkflowTrigger
from utils.clock import utc_now

logger = logging.getLogger("opswatch.automation.workflows")

DEFAULT_APPROVAL_TIMEOUT = 24 * 60 * 60
MAX_FINISHED_RUNS = 1000


class WorkflowValidationError(ValueError):
    """A workflow step graph that cannot be registered."""


def validate_workflow(workflow):
    """Check the step graph: known edges, everything reachable, no cycles."""
    if not workflow.steps:
        raise WorkflowValidationError(f"{workflow.id}: workflow has no steps")

    steps = {}
    for step in workflow.steps:
        if step.id in steps:
            raise WorkflowValidationError(f"{workflow.id}: duplicate step id {step.id}")
        steps[step.id] = step

    edges = {}
    for step in workflow.steps:
        targets = [t for t in (step.on_success, step.on_failure) if t is not None]
        for target in targets:
            if target not in steps:
                raise WorkflowValidationError(f"{workflow.id}: step {step.id} points to unknown step {target}")
        edges[step.id] = targets
        if step.type == StepType.ACTION:
            level = step.parameters.get("automation_level", AutomationLevel.FULLY_AUTOMATED.value)
            if level == AutomationLevel.MANUAL_APPROVAL.value:
                raise WorkflowValidationError(
                    f"{workflow.id}: action step {step.id} needs approval; use an approval step before it"
                )

    # Depth-first walk from the entry step; grey nodes on the stack mark a cycle.
    white, grey, black = 0, 1, 2
    color = {sid: white for sid in steps}

    def visit(sid):
        color[sid] = grey
        for target in edges[sid]:
            if color[target] == grey:
                raise WorkflowValidationError(f"{workflow.id}: cycle through step {target}")
            if color[target] == white:
                visit(target)
        color[sid] = black

    visit(workflow.steps[0].id)
    unreachable = [sid for sid, c in color.items() if c == white]
    if unreachable:
        raise WorkflowValidationError(f"{workflow.id}: unreachable steps {unreachable}")


class WorkflowEngine:
    def __init__(self, executor=None, router=None, bus=None, store=None, clock=utc_now,
                 default_approval_timeout=DEFAULT_APPROVAL_TIMEOUT, max_finished_runs=MAX_FINISHED_RUNS):
        self.executor = executor
        self.router = router
        self.bus = bus
        self.store = store
        self.clock = clock
        self.default_approval_timeout = default_approval_timeout
        self.max_finished_runs = max_finished_runs
        self._workflows = {}
        self._adhoc = {}
        self._runs = {}
        self._lock = threading.RLock()

    # --- Registry ---

    def register(self, workflow):
        """Validate and register a workflow; raises WorkflowValidationError."""
        validate_workflow(workflow)
        with self._lock:
            self._workflows[workflow.id] = copy.deepcopy(workflow)
        logger.debug(f"Registered workflow {workflow.id}")

    def load(self, workflows):
        """Register each workflow, skipping invalid ones; returns the count registered."""
        count = 0
        for workflow in workflows:
            try:
                self.register(workflow)
                count += 1
            except WorkflowValidationError as e:
                logger.warning(f"Skipping workflow: {e}")
        return count

    def get(self, workflow_id):
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            return copy.deepcopy(workflow) if workflow is not None else None

    def list_workflows(self):
        with self._lock:
            return [copy.deepcopy(w) for w in self._workflows.values()]

    def set_status(self, workflow_id, status):
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                return False
            workflow.status = WorkflowStatus(status)
        logger.info(f"Workflow {workflow_id} set to {workflow.status.value}")
        return True

    # --- Starting runs ---

    def trigger(self, workflow_id, context=None, trigger_type=TriggerType.MANUAL):
        """Start a run of an active workflow. Returns the run, or None if it cannot start."""
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                logger.warning(f"Trigger for unknown workflow: {workflow_id}")
                return None
            if workflow.status != WorkflowStatus.ACTIVE:
                logger.info(f"Workflow {workflow_id} is {workflow.status.value}; not starting")
                return None
            run = self._start(workflow, context, TriggerType(trigger_type))
        self._drive(run)
        return self._snapshot(run)

    def match_event(self, event, kind=None, exclude=()):
        """Start every active workflow whose trigger matches the event.

        Workflows listed in ``exclude`` are skipped (already started for this event).
        """
        kind = kind or getattr(event, "kind", None)
        payload = event_payload(event)
        started = []
        for workflow in self.list_workflows():
            if workflow.status != WorkflowStatus.ACTIVE or workflow.id in exclude:
                continue
            if workflow.trigger.type.value != kind:
                continue
            if not all_hold(workflow.trigger.conditions, payload):
                continue
            run = self.trigger(workflow.id, context=payload, trigger_type=workflow.trigger.type)
            if run is not None:
                started.append(run)
        return started

    def request_action_approval(self, action, context=None, rule_id=None):
        """Start an ad-hoc run that executes an approval-gated action once approved."""
        workflow_id = f"approval_{uuid.uuid4().hex[:8]}"
        parameters = dict(action.parameters)
        parameters["action_type"] = action.type.value
        parameters["automation_level"] = AutomationLevel.SEMI_AUTOMATED.value
        parameters["max_impact"] = action.max_impact
        workflow = AutomationWorkflow(
            id=workflow_id,
            name=f"Approval for {action.type.value}" + (f" ({rule_id})" if rule_id else ""),
            trigger=WorkflowTrigger(type=TriggerType.EVENT),
            steps=[
                WorkflowStep(
                    id="approve", type=StepType.APPROVAL, name="Approve action",
                    parameters={"approvers": list(action.approvers), "rule_id": rule_id},
                    on_success="execute",
                ),
                WorkflowStep(id="execute", type=StepType.ACTION, name="Execute approved action",
                             parameters=parameters),
            ],
        )
        with self._lock:
            self._adhoc[workflow_id] = workflow
            run = self._start(workflow, context, TriggerType.EVENT)
        self._drive(run)
        return self._snapshot(run)

    def _start(self, workflow, context, trigger_type):
        now = self.clock()
        run = WorkflowRun(
            workflow_id=workflow.id,
            current_step=workflow.entry_step.id,
            context=dict(context or {}),
            trigger_type=trigger_type,
            started_at=now,
        )
        self._runs[run.id] = run
        run.state = RunState.RUNNING
        logger.info(f"Workflow {workflow.id} started (run {run.id})")
        return run

    # --- Resuming runs ---

    def record_approval(self, run_id, approver_id, approve, reason=None):
        """Record a decision on a run waiting for approval. False if not applicable."""
        with self._lock:
            run = self._runs.get(run_id)
            if run is None or run.state != RunState.WAITING_APPROVAL:
                return False
            step = self._workflow_for(run).step(run.current_step)
            approvers = step.parameters.get("approvers") or []
            if approvers and approver_id not in approvers:
                logger.warning(f"{approver_id} is not an approver for run {run_id}")
                return False
            decision = ApprovalDecision.APPROVED if approve else ApprovalDecision.REJECTED
            run.approvals.append(Approval(
                approver_id=approver_id, decision=decision, reason=reason, timestamp=self.clock(),
            ))
            self._log(run, step, approve, f"{decision.value} by {approver_id}")
            run.deadline = None
            run.state = RunState.RUNNING
            self._follow(run, step, approve)
        self._drive(run)
        return True

    def advance(self, now=None):
        """Resume runs whose delay elapsed and time out stale approvals."""
        now = now or self.clock()
        resumed = []
        with self._lock:
            for run in list(self._runs.values()):
                if run.deadline is None or run.deadline > now:
                    continue
                step = self._workflow_for(run).step(run.current_step)
                if run.state == RunState.WAITING_DELAY:
                    self._log(run, step, True, "delay elapsed")
                    success = True
                elif run.state == RunState.WAITING_APPROVAL:
                    run.approvals.append(Approval(
                        approver_id="system", decision=ApprovalDecision.REJECTED,
                        reason="approval timed out", timestamp=now,
                    ))
                    self._log(run, step, False, "approval timed out")
                    success = False
                else:
                    continue
                run.deadline = None
                run.state = RunState.RUNNING
                self._follow(run, step, success)
                resumed.append(run)
        for run in resumed:
            self._drive(run)
        return len(resumed)

    # --- Stepping ---

    def _drive(self, run):
        """Walk a running run until it waits or finishes.

        Called without the lock held. Steps execute outside it so reads are
        not blocked by actions and notifications; a run in the running state
        is only touched by the thread driving it.
        """
        with self._lock:
            if run.state != RunState.RUNNING:
                return
            workflow = self._workflow_for(run)
        while True:
            with self._lock:
                if run.state != RunState.RUNNING:
                    return
                step = workflow.step(run.current_step)
                if step.type == StepType.APPROVAL:
                    timeout = step.timeout or step.parameters.get("timeout") or self.default_approval_timeout
                    run.state = RunState.WAITING_APPROVAL
                    run.deadline = self.clock() + timedelta(seconds=timeout)
                    self._publish("workflow:waiting_approval", run)
                    self._persist(run)
                    return
                if step.type == StepType.DELAY:
                    seconds = step.parameters.get("seconds", step.timeout or 0)
                    run.state = RunState.WAITING_DELAY
                    run.deadline = self.clock() + timedelta(seconds=seconds)
                    self._persist(run)
                    return
            success, message = self._run_step(step, run)
            with self._lock:
                self._log(run, step, success, message)
                self._follow(run, step, success)

    def _run_step(self, step, run):
        try:
            if step.type == StepType.CONDITION:
                held = all_hold(step.parameters.get("conditions", []), run.context)
                return held, "conditions held" if held else "conditions not met"
            if step.type == StepType.ACTION:
                return self._run_action(step, run)
            if step.type == StepType.NOTIFICATION:
                return self._run_notification(step, run)
        except Exception as e:
            logger.warning(f"Step {step.id} of run {run.id} failed: {e}")
            return False, str(e)
        return False, f"unsupported step type {step.type.value}"

    def _run_action(self, step, run):
        if self.executor is None:
            return False, "no executor configured"
        params = step.parameters
        action = AutomatedAction(
            type=ActionType(params.get("action_type", ActionType.PREVENTIVE_MEASURE.value)),
            parameters={k: v for k, v in params.items() if k not in ("action_type", "automation_level")},
            automation_level=AutomationLevel(params.get("automation_level", AutomationLevel.FULLY_AUTOMATED.value)),
            max_impact=float(params.get("max_impact", 1.0)),
        )
        result = self.executor.execute(action, run.context)
        return result.success, result.message

    def _run_notification(self, step, run):
        if self.router is None:
            return False, "no notification router configured"
        params = step.parameters
        description = params.get("message") or run.context.get("description", "")
        delivered = self.router.announce(
            Severity(params.get("severity", "info")), params.get("title", step.name), description,
            source="automation",
        )
        return True, f"notified {delivered} channel(s)"

    def _follow(self, run, step, success):
        target = step.on_success if success else step.on_failure
        if target is not None:
            run.current_step = target
            return
        self._finish(run, RunState.COMPLETED if success else RunState.ABORTED)

    def _finish(self, run, state):
        now = self.clock()
        run.state = state
        run.finished_at = now
        run.deadline = None
        workflow = self._workflows.get(run.workflow_id)
        if workflow is not None:
            m = workflow.metrics
            elapsed = (now - run.started_at).total_seconds()
            m.average_execution_time = (m.average_execution_time * m.total_executions + elapsed) / (m.total_executions + 1)
            m.total_executions += 1
            if state == RunState.COMPLETED:
                m.successful_executions += 1
            m.success_rate = m.successful_executions / m.total_executions
            m.last_execution = now
        # ad-hoc approval workflows live only as long as their run
        self._adhoc.pop(run.workflow_id, None)
        logger.info(f"Workflow run {run.id} {state.value}")
        self._publish(f"workflow:{state.value}", run)
        self._persist(run)
        self._prune_finished()

    def _prune_finished(self):
        finished = [r for r in self._runs.values() if r.finished_at is not None]
        excess = len(finished) - self.max_finished_runs
        if excess <= 0:
            return
        finished.sort(key=lambda r: r.finished_at)
        for r in finished[:excess]:
            del self._runs[r.id]
        logger.debug(f"Pruned {excess} finished workflow run(s)")

    def _log(self, run, step, success, message):
        run.step_log.append(StepLogEntry(
            step_id=step.id, step_type=step.type.value, success=success, message=message, at=self.clock(),
        ))

    def _workflow_for(self, run):
        return self._workflows.get(run.workflow_id) or self._adhoc[run.workflow_id]

    # --- Reads ---

    def _snapshot(self, run):
        with self._lock:
            return copy.deepcopy(run)

    def get_run(self, run_id):
        with self._lock:
            run = self._runs.get(run_id)
            return copy.deepcopy(run) if run is not None else None

    def list_runs(self, workflow_id=None, state=None):
        """Runs newest first, optionally filtered by workflow and state."""
        with self._lock:
            runs = [
                r for r in self._runs.values()
                if (workflow_id is None or r.workflow_id == workflow_id)
                and (state is None or r.state == RunState(state))
            ]
            runs.sort(key=lambda r: r.started_at, reverse=True)
            return [copy.deepcopy(r) for r in runs]

    def pending_approvals(self):
        return self.list_runs(state=RunState.WAITING_APPROVAL)

    # --- Collaborators ---

    def _publish(self, topic, run):
        if self.bus is not None:
            self.bus.publish(topic, copy.deepcopy(run))

    def _persist(self, run):
        if self.store is None:
            return
        try:
            self.store.save_workflow_run(run)
        except Exception as e:
            logger.warning(f"Failed to persist workflow run {run.id}: {e}")
