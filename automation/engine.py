"""Decision rule engine: match upstream events to rules and execute their actions."""
import copy
import logging
import threading

from automation.conditions import condition_holds
from automation.executor import aggregate_outcome, calculate_impact
from models.decisions import ActionResult, Approval, ApprovalGatedAction, DecisionExecution, Rollback
from models.enums import ApprovalDecision, Outcome, TriggeredBy
from models.events import event_payload
from utils.clock import utc_now

logger = logging.getLogger("opswatch.automation.engine")

RECENT_EXECUTIONS = 10
TOP_RULES = 5


class DecisionRuleEngine:
    """Holds decision rules and their execution history.

    Rules fire when every one of their conditions for the event's kind holds.
    Rules marked ``approval_required`` park the execution as pending until an
    approver decides it through ``approve_execution``.
    """

    def __init__(self, executor, workflows=None, bus=None, store=None, clock=utc_now):
        self.executor = executor
        self.workflows = workflows
        self.bus = bus
        self.store = store
        self.clock = clock
        self._rules = {}
        self._executions = {}
        self._awaiting = {}
        self._lock = threading.RLock()

    # --- Rules ---

    def register_rule(self, rule):
        with self._lock:
            self._rules[rule.id] = copy.deepcopy(rule)

    def load_rules(self, rules):
        for rule in rules:
            self.register_rule(rule)
        logger.info(f"{len(self._rules)} decision rules registered")

    def get_rule(self, rule_id):
        with self._lock:
            rule = self._rules.get(rule_id)
            return copy.deepcopy(rule) if rule is not None else None

    def list_rules(self):
        with self._lock:
            return [copy.deepcopy(r) for r in self._rules.values()]

    def set_enabled(self, rule_id, enabled):
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return False
            rule.enabled = bool(enabled)
            return True

    # --- Evaluation ---

    def evaluate(self, event, kind=None):
        """Return the enabled rules that fire for an event, highest priority first.

        Only conditions whose type equals the event kind are considered; a rule
        with none of those never fires. Ties keep registration order.
        """
        kind = kind or getattr(event, "kind", None)
        payload = event_payload(event)
        confidence = getattr(event, "confidence", payload.get("confidence"))
        fired = []
        with self._lock:
            for rule in self._rules.values():
                if not rule.enabled:
                    continue
                relevant = [c for c in rule.conditions if c.type.value == kind]
                if not relevant:
                    continue
                if all(condition_holds(c, payload, confidence) for c in relevant):
                    fired.append(copy.deepcopy(rule))
        fired.sort(key=lambda r: r.priority, reverse=True)
        return fired

    def execute_rule(self, rule, event, triggered_by=None):
        """Run a rule's actions for an event and record the execution."""
        kind = getattr(event, "kind", None)
        if triggered_by is None:
            triggered_by = TriggeredBy(kind) if kind in ("prediction", "anomaly") else TriggeredBy.SYSTEM
        execution = DecisionExecution(
            rule_id=rule.id,
            triggered_at=self.clock(),
            triggered_by=TriggeredBy(triggered_by),
            conditions=copy.deepcopy(rule.conditions),
            event=event_payload(event),
        )

        if rule.approval_required:
            execution.approvals = [
                Approval(approver_id=a, decision=ApprovalDecision.PENDING, timestamp=execution.triggered_at)
                for a in rule.approvers
            ]
            with self._lock:
                self._awaiting[execution.id] = event
            logger.info(f"Rule {rule.id} awaiting approval (execution {execution.id})")
            self._record(execution)
            self._publish("decision:approval_required", execution)
            return copy.deepcopy(execution)

        self._run_actions(rule, execution, event)
        self._record(execution)
        self._publish("decision:executed", execution)
        return copy.deepcopy(execution)

    def _run_actions(self, rule, execution, event):
        payload = event_payload(event)
        for action in rule.actions:
            if isinstance(action, ApprovalGatedAction):
                execution.actions_executed.append(self._defer(action, payload, rule.id))
                continue
            try:
                result = self.executor.execute(action, event)
            except Exception as e:
                logger.warning(f"Action {action.type.value} of rule {rule.id} raised: {e}")
                result = ActionResult(
                    action_type=action.type.value, success=False, message=str(e),
                    executed_at=self.clock(), automation_level=action.automation_level.value,
                )
            execution.actions_executed.append(result)
        execution.outcome = aggregate_outcome(execution.actions_executed)
        execution.impact = calculate_impact(execution.actions_executed)
        logger.info(f"Rule {rule.id} executed: {execution.outcome.value} (impact {execution.impact.overall:.2f})")

    def _defer(self, action, payload, rule_id):
        result = ActionResult(
            action_type=action.type.value,
            executed_at=self.clock(),
            automation_level=action.automation_level.value,
            deferred=True,
        )
        if self.workflows is None:
            result.message = "approval required but no workflow engine is configured"
            return result
        run = self.workflows.request_action_approval(action, payload, rule_id=rule_id)
        result.success = True
        result.message = f"Awaiting approval (run {run.id})"
        result.data = {"run_id": run.id}
        return result

    def process_events(self, predictions=(), anomalies=()):
        """Evaluate and execute rules for a batch of upstream events."""
        executions = []
        for event in list(predictions) + list(anomalies):
            try:
                for rule in self.evaluate(event):
                    executions.append(self.execute_rule(rule, event))
            except Exception as e:
                logger.error(f"Decision processing failed for {getattr(event, 'entity_id', '?')}: {e}")
        return executions

    # --- Approvals and rollback ---

    def approve_execution(self, execution_id, approver_id, approve, reason=None):
        """Decide a pending execution. Only the rule's listed approvers count.

        An approval runs the rule's actions; a rejection fails the execution.
        """
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.outcome != Outcome.PENDING or execution_id not in self._awaiting:
                return False
            rule = self._rules.get(execution.rule_id)
            if rule is None or (rule.approvers and approver_id not in rule.approvers):
                logger.warning(f"{approver_id} cannot approve execution {execution_id}")
                return False

            decision = ApprovalDecision.APPROVED if approve else ApprovalDecision.REJECTED
            approval = Approval(approver_id=approver_id, decision=decision, reason=reason, timestamp=self.clock())
            execution.approvals = [a for a in execution.approvals if a.approver_id != approver_id] + [approval]
            event = self._awaiting.pop(execution_id)

            if approve:
                self._run_actions(rule, execution, event)
            else:
                execution.outcome = Outcome.FAILURE
                logger.info(f"Execution {execution_id} rejected by {approver_id}")
            snapshot = copy.deepcopy(execution)

        self._persist(snapshot)
        self._publish("decision:executed", snapshot)
        return True

    def rollback(self, execution_id, reason):
        """Roll back an execution whose actions are all rollbackable."""
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.rollback is not None:
                return False
            rule = self._rules.get(execution.rule_id)
            if rule is None or execution.outcome == Outcome.PENDING:
                return False
            success = all(a.rollbackable for a in rule.actions)
            execution.rollback = Rollback(executed_at=self.clock(), reason=reason, success=success)
            snapshot = copy.deepcopy(execution)

        if success:
            logger.info(f"Execution {execution_id} rolled back: {reason}")
            self._publish("decision:rolled_back", snapshot)
        else:
            logger.warning(f"Execution {execution_id} has non-rollbackable actions")
        self._persist(snapshot)
        return success

    # --- History and stats ---

    def get_execution(self, execution_id):
        with self._lock:
            execution = self._executions.get(execution_id)
            return copy.deepcopy(execution) if execution is not None else None

    def pending_executions(self):
        with self._lock:
            return [copy.deepcopy(self._executions[i]) for i in self._awaiting if i in self._executions]

    def get_automation_stats(self):
        with self._lock:
            rules = list(self._rules.values())
            executions = [e for r in rules for e in r.execution_history]

            total = len(executions)
            successes = sum(1 for e in executions if e.outcome == Outcome.SUCCESS)
            performance = []
            for rule in rules:
                history = rule.execution_history
                rate = sum(1 for e in history if e.outcome == Outcome.SUCCESS) / len(history) if history else 0
                performance.append((rule.id, rate))
            performance.sort(key=lambda p: p[1], reverse=True)
            recent = sorted(executions, key=lambda e: e.triggered_at, reverse=True)[:RECENT_EXECUTIONS]

            return {
                "total_rules": len(rules),
                "active_rules": sum(1 for r in rules if r.enabled),
                "total_executions": total,
                "success_rate": successes / total if total else 0,
                "average_impact": sum(e.impact.overall for e in executions) / total if total else 0,
                "top_performing_rules": [rule_id for rule_id, _ in performance[:TOP_RULES]],
                "recent_executions": [e.to_dict() for e in recent],
            }

    def clear_history(self):
        with self._lock:
            for rule in self._rules.values():
                rule.execution_history = []
            self._executions.clear()
            self._awaiting.clear()
        logger.info("Execution history cleared")

    # --- Collaborators ---

    def _record(self, execution):
        with self._lock:
            rule = self._rules.get(execution.rule_id)
            if rule is not None:
                rule.execution_history.append(execution)
            self._executions[execution.id] = execution
        self._persist(execution)

    def _publish(self, topic, execution):
        if self.bus is not None:
            self.bus.publish(topic, copy.deepcopy(execution))

    def _persist(self, execution):
        if self.store is None:
            return
        try:
            self.store.save_execution(execution)
        except Exception as e:
            logger.warning(f"Failed to persist execution {execution.id}: {e}")
