"""Action execution for decision rules and workflow action steps."""
import logging

from models.decisions import ActionResult, ApprovalGatedAction, ExecutionImpact
from models.enums import ActionType, AutomationLevel, Outcome, Severity
from models.events import event_payload
from utils.clock import utc_now

logger = logging.getLogger("opswatch.automation.executor")

BASE_IMPACT = {
    ActionType.NOTIFICATION: 0.2,
    ActionType.ESCALATION: 0.4,
    ActionType.RESOURCE_ALLOCATION: 0.6,
    ActionType.WORKFLOW_TRIGGER: 0.5,
    ActionType.PREVENTIVE_MEASURE: 0.3,
}

URGENCY_SEVERITY = {
    "low": Severity.INFO,
    "medium": Severity.WARNING,
    "high": Severity.CRITICAL,
    "critical": Severity.EMERGENCY,
}


class ApprovalRequiredError(Exception):
    """Raised when an approval-gated action is handed to the executor directly."""

    def __init__(self, action):
        super().__init__(f"{action.type.value} action requires approval before it can run")
        self.action = action


class ActionFailed(Exception):
    """A handler could not carry out its action."""


def aggregate_outcome(results):
    """Fold per-action results into an execution outcome.

    Deferred results (actions waiting on approval) are not counted. With no
    attempted actions the outcome is success, or pending if everything was
    deferred. A failed ``fully_automated`` action makes the outcome partial;
    failure is left for executions where every attempted action failed and
    none of them was fully automated.
    """
    attempted = [r for r in results if not r.deferred]
    if not attempted:
        return Outcome.PENDING if results else Outcome.SUCCESS
    for r in attempted:
        if not r.success and r.automation_level == AutomationLevel.FULLY_AUTOMATED.value:
            return Outcome.PARTIAL
    if not any(r.success for r in attempted):
        return Outcome.FAILURE
    return Outcome.SUCCESS


def calculate_impact(results):
    """Average impact of succeeded actions over all attempted actions."""
    attempted = [r for r in results if not r.deferred]
    if not attempted:
        return ExecutionImpact()
    overall = sum(r.impact for r in attempted if r.success) / len(attempted)
    return ExecutionImpact(positive=max(0.0, overall), negative=max(0.0, -overall), overall=overall)


class ActionExecutor:
    """Runs automated actions and reports an ActionResult for each.

    Effects go out over the event bus (``action:<type>``) and through the
    notification router and workflow engine when they are wired in.
    """

    def __init__(self, bus=None, router=None, workflows=None, clock=utc_now):
        self.bus = bus
        self.router = router
        self.workflows = workflows
        self.clock = clock
        self._handlers = {
            ActionType.NOTIFICATION: self._notify,
            ActionType.ESCALATION: self._escalate,
            ActionType.RESOURCE_ALLOCATION: self._allocate_resources,
            ActionType.WORKFLOW_TRIGGER: self._trigger_workflow,
            ActionType.PREVENTIVE_MEASURE: self._preventive_measure,
        }

    def execute(self, action, event=None):
        if isinstance(action, ApprovalGatedAction):
            raise ApprovalRequiredError(action)

        payload = event_payload(event)
        result = ActionResult(
            action_type=action.type.value,
            executed_at=self.clock(),
            automation_level=action.automation_level.value,
        )
        try:
            result.message, result.data = self._handlers[action.type](action, payload)
            result.success = True
            result.impact = min(BASE_IMPACT[action.type], action.max_impact)
        except Exception as e:
            result.success = False
            result.message = f"{action.type.value} failed: {e}"
            logger.warning(result.message)

        if self.bus is not None:
            self.bus.publish(f"action:{action.type.value}", {
                "result": result,
                "parameters": dict(action.parameters),
                "entity_id": payload.get("entity_id"),
            })
        return result

    # --- Handlers ---

    def _notify(self, action, payload):
        params = action.parameters
        recipients = params.get("recipients", [])
        severity = URGENCY_SEVERITY.get(params.get("urgency", "medium"), Severity.WARNING)
        title = params.get("title") or f"Automated notification: {params.get('template', 'decision')}"
        description = payload.get("description") or params.get("message", "")
        delivered = self._announce(severity, title, description)
        return f"Notification sent to {', '.join(recipients) or 'subscribers'}", {
            "recipients": recipients, "delivered": delivered,
        }

    def _escalate(self, action, payload):
        params = action.parameters
        target = params.get("escalate_to", "on_call")
        description = payload.get("description", "")
        if params.get("include_recommendations"):
            actions = [r.get("action") for r in payload.get("recommendations", [])]
            if actions:
                description = f"{description} Recommended: {'; '.join(actions)}".strip()
        self._announce(Severity.CRITICAL, f"Escalated to {target}", description)
        return f"Escalated to {target}", {"escalate_to": target}

    def _allocate_resources(self, action, payload):
        params = action.parameters
        request = {k: v for k, v in params.items() if k != "action_type"}
        return f"Resource allocation requested: {params.get('action', 'allocate')}", {"request": request}

    def _trigger_workflow(self, action, payload):
        workflow_id = action.parameters.get("workflow_id")
        if not workflow_id:
            raise ActionFailed("no workflow_id given")
        if self.workflows is None:
            raise ActionFailed("no workflow engine configured")
        run = self.workflows.trigger(workflow_id, context=payload)
        if run is None:
            raise ActionFailed(f"workflow {workflow_id} is unknown or not active")
        return f"Workflow {workflow_id} started", {"run_id": run.id, "state": run.state.value}

    def _preventive_measure(self, action, payload):
        params = action.parameters
        measure = params.get("action", "preventive_measure")
        target = params.get("target", payload.get("entity_id", "system"))
        return f"Preventive measure applied: {measure} on {target}", {"measure": measure, "target": target}

    def _announce(self, severity, title, description):
        if self.router is None:
            return 0
        return self.router.announce(severity, title, description, source="automation")
