"""Tests for workflow validation and run execution."""
import threading

import pytest
from unittest.mock import MagicMock

from automation.executor import ActionExecutor
from automation.rules_manager import AutomationRulesManager, parse_workflow
from automation.workflows import WorkflowEngine, WorkflowValidationError, validate_workflow
from config import DEFAULT_RULES_PATH
from models.decisions import ActionResult, ApprovalGatedAction
from models.enums import ActionType, ApprovalDecision, RunState, TriggerType, WorkflowStatus
from models.events import PredictionEvent


def _wf(steps, wid="wf", trigger=None):
    return parse_workflow({"id": wid, "trigger": trigger or {"type": "manual"}, "steps": steps})


def _action(sid, on_success=None, on_failure=None, **params):
    step = {"id": sid, "type": "action", "parameters": {"action_type": "preventive_measure", **params}}
    if on_success:
        step["on_success"] = on_success
    if on_failure:
        step["on_failure"] = on_failure
    return step


@pytest.fixture
def router():
    r = MagicMock()
    r.announce.return_value = 1
    return r


@pytest.fixture
def executor(bus, router, clock):
    return ActionExecutor(bus, router, clock=clock)


@pytest.fixture
def workflows(executor, router, bus, clock):
    engine = WorkflowEngine(executor, router, bus, clock=clock)
    executor.workflows = engine
    return engine


def _failing_executor():
    executor = MagicMock()
    executor.execute.return_value = ActionResult(action_type="preventive_measure", success=False, message="nope")
    return executor


# ── Validation ────────────────────────────────────────

class TestValidation:
    def test_valid_chain(self):
        validate_workflow(_wf([_action("a", "b"), _action("b")]))

    def test_no_steps(self):
        with pytest.raises(WorkflowValidationError):
            validate_workflow(_wf([]))

    def test_duplicate_step_ids(self):
        with pytest.raises(WorkflowValidationError, match="duplicate"):
            validate_workflow(_wf([_action("a", "b"), _action("b"), _action("b")]))

    def test_unknown_edge(self):
        with pytest.raises(WorkflowValidationError, match="unknown step"):
            validate_workflow(_wf([_action("a", "ghost")]))

    def test_cycle(self):
        with pytest.raises(WorkflowValidationError, match="cycle"):
            validate_workflow(_wf([_action("a", "b"), _action("b", "c"), _action("c", "a")]))

    def test_self_loop_on_failure(self):
        with pytest.raises(WorkflowValidationError, match="cycle"):
            validate_workflow(_wf([_action("a", on_failure="a")]))

    def test_unreachable_step(self):
        with pytest.raises(WorkflowValidationError, match="unreachable"):
            validate_workflow(_wf([_action("a"), _action("orphan")]))

    def test_diamond_is_not_a_cycle(self):
        validate_workflow(_wf([
            _action("a", "b", "c"), _action("b", "d"), _action("c", "d"), _action("d"),
        ]))

    def test_manual_approval_action_step_rejected(self):
        with pytest.raises(WorkflowValidationError, match="approval"):
            validate_workflow(_wf([_action("a", automation_level="manual_approval")]))

    def test_load_skips_invalid(self, workflows):
        count = workflows.load([_wf([_action("a")], wid="good"), _wf([_action("a", "x")], wid="bad")])
        assert count == 1
        assert [w.id for w in workflows.list_workflows()] == ["good"]

    def test_bundled_workflows_are_valid(self, workflows):
        mgr = AutomationRulesManager(DEFAULT_RULES_PATH)
        assert workflows.load(mgr.workflows) == 2


# ── Runs ──────────────────────────────────────────────

class TestRuns:
    def test_success_path_completes(self, workflows, recorder):
        workflows.register(_wf([_action("a", "b"), _action("b")]))
        run = workflows.trigger("wf", {"entity_id": "cluster-7"})
        assert run.state == RunState.COMPLETED
        assert [e.step_id for e in run.step_log] == ["a", "b"]
        assert run.finished_at is not None
        assert "workflow:completed" in [t for t, _ in recorder]

        metrics = workflows.get("wf").metrics
        assert metrics.total_executions == 1
        assert metrics.success_rate == 1.0

    def test_first_step_failure_aborts_without_downstream(self, router, bus, clock, recorder):
        executor = _failing_executor()
        engine = WorkflowEngine(executor, router, bus, clock=clock)
        engine.register(_wf([_action("a", "b"), _action("b", "c"), _action("c")]))

        run = engine.trigger("wf")
        assert run.state == RunState.ABORTED
        assert [e.step_id for e in run.step_log] == ["a"]
        assert executor.execute.call_count == 1
        assert "workflow:aborted" in [t for t, _ in recorder]
        assert engine.get("wf").metrics.success_rate == 0

    def test_failure_edge_followed(self, router, bus, clock):
        engine = WorkflowEngine(_failing_executor(), router, bus, clock=clock)
        engine.register(_wf([
            _action("a", "b", "notify"), _action("b"),
            {"id": "notify", "type": "notification", "parameters": {"title": "a failed"}},
        ]))
        run = engine.trigger("wf")
        assert run.state == RunState.COMPLETED
        assert [e.step_id for e in run.step_log] == ["a", "notify"]
        assert router.announce.call_args[0][1] == "a failed"

    def test_condition_step(self, workflows):
        workflows.register(_wf([
            {"id": "check", "type": "condition", "on_success": "act", "parameters": {
                "conditions": [{"field": "severity", "operator": "eq", "value": "high"}]}},
            _action("act"),
        ]))
        assert workflows.trigger("wf", {"severity": "high"}).state == RunState.COMPLETED
        assert workflows.trigger("wf", {"severity": "low"}).state == RunState.ABORTED

    def test_unknown_or_inactive_workflow(self, workflows):
        assert workflows.trigger("ghost") is None
        workflows.register(_wf([_action("a")]))
        assert workflows.set_status("wf", "paused") is True
        assert workflows.trigger("wf") is None
        assert workflows.set_status("ghost", "active") is False

    def test_list_runs_filters(self, workflows, clock):
        workflows.register(_wf([_action("a")], wid="one"))
        workflows.register(_wf([{"id": "wait", "type": "approval"}], wid="two"))
        first = workflows.trigger("one")
        clock.advance(1)
        second = workflows.trigger("two")
        assert [r.id for r in workflows.list_runs()] == [second.id, first.id]
        assert [r.id for r in workflows.list_runs(workflow_id="one")] == [first.id]
        assert [r.id for r in workflows.pending_approvals()] == [second.id]


# ── Approval and delay steps ──────────────────────────

class TestSuspension:
    def _approval_wf(self, timeout=None):
        step = {"id": "approve", "type": "approval", "parameters": {"approvers": ["lead"]},
                "on_success": "go", "on_failure": "rejected"}
        if timeout:
            step["timeout"] = timeout
        return _wf([step, _action("go"), {"id": "rejected", "type": "notification"}])

    def test_approval_suspends_and_resumes(self, workflows):
        workflows.register(self._approval_wf())
        run = workflows.trigger("wf")
        assert run.state == RunState.WAITING_APPROVAL
        assert workflows.record_approval(run.id, "stranger", True) is False
        assert workflows.record_approval(run.id, "lead", True, "ok") is True

        done = workflows.get_run(run.id)
        assert done.state == RunState.COMPLETED
        assert done.approvals[0].decision == ApprovalDecision.APPROVED
        assert [e.step_id for e in done.step_log] == ["approve", "go"]
        assert workflows.record_approval(run.id, "lead", True) is False

    def test_rejection_follows_failure_edge(self, workflows):
        workflows.register(self._approval_wf())
        run = workflows.trigger("wf")
        workflows.record_approval(run.id, "lead", False, "too risky")
        done = workflows.get_run(run.id)
        assert [e.step_id for e in done.step_log] == ["approve", "rejected"]

    def test_approval_timeout_rejects_as_system(self, workflows, clock):
        workflows.register(self._approval_wf(timeout=3600))
        run = workflows.trigger("wf")
        assert workflows.advance(clock.advance(3599)) == 0
        assert workflows.advance(clock.advance(1)) == 1
        done = workflows.get_run(run.id)
        assert done.approvals[-1].approver_id == "system"
        assert done.approvals[-1].decision == ApprovalDecision.REJECTED
        assert done.step_log[-1].step_id == "rejected"

    def test_default_approval_timeout_is_a_day(self, workflows, clock):
        workflows.register(_wf([{"id": "approve", "type": "approval"}]))
        run = workflows.trigger("wf")
        assert (run.deadline - clock()).total_seconds() == 86400

    def test_delay_step(self, workflows, clock):
        workflows.register(_wf([
            {"id": "wait", "type": "delay", "parameters": {"seconds": 60}, "on_success": "act"},
            _action("act"),
        ]))
        run = workflows.trigger("wf")
        assert run.state == RunState.WAITING_DELAY
        workflows.advance(clock.advance(30))
        assert workflows.get_run(run.id).state == RunState.WAITING_DELAY
        workflows.advance(clock.advance(30))
        assert workflows.get_run(run.id).state == RunState.COMPLETED


# ── Event matching ────────────────────────────────────

class TestMatchEvent:
    def _event(self, outcome="escalation", probability=0.9):
        return PredictionEvent(entity_id="team-a", confidence=0.9, outcome=outcome, probability=probability)

    def test_bundled_trigger_matches(self, workflows):
        workflows.load(AutomationRulesManager(DEFAULT_RULES_PATH).workflows)
        started = workflows.match_event(self._event())
        assert [r.workflow_id for r in started] == ["resource_rebalancing"]
        assert started[0].trigger_type == TriggerType.PREDICTION
        assert started[0].context["entity_id"] == "team-a"

    def test_conditions_must_hold(self, workflows):
        workflows.load(AutomationRulesManager(DEFAULT_RULES_PATH).workflows)
        assert workflows.match_event(self._event(probability=0.5)) == []

    def test_exclude(self, workflows):
        workflows.load(AutomationRulesManager(DEFAULT_RULES_PATH).workflows)
        assert workflows.match_event(self._event(), exclude={"resource_rebalancing"}) == []

    def test_kind_must_match_trigger_type(self, workflows):
        workflows.load(AutomationRulesManager(DEFAULT_RULES_PATH).workflows)
        assert workflows.match_event({"prediction": {"outcome": "escalation", "probability": 0.9}},
                                     kind="anomaly") == []

    def test_paused_workflow_not_started(self, workflows):
        workflows.load(AutomationRulesManager(DEFAULT_RULES_PATH).workflows)
        workflows.set_status("resource_rebalancing", WorkflowStatus.PAUSED)
        assert workflows.match_event(self._event()) == []


# ── Ad-hoc approvals and housekeeping ─────────────────

class TestHousekeeping:
    def _gated(self):
        return ApprovalGatedAction(type=ActionType.NOTIFICATION, parameters={"message": "rebalance"},
                                   approvers=["lead"])

    def test_adhoc_definition_dropped_when_run_finishes(self, workflows):
        run = workflows.request_action_approval(self._gated(), {"entity_id": "db"}, rule_id="r1")
        assert run.state == RunState.WAITING_APPROVAL
        assert run.workflow_id in workflows._adhoc

        assert workflows.record_approval(run.id, "lead", True) is True
        assert run.workflow_id not in workflows._adhoc
        done = workflows.get_run(run.id)
        assert done.state == RunState.COMPLETED
        assert [e.step_id for e in done.step_log] == ["approve", "execute"]

    def test_adhoc_definition_dropped_on_timeout(self, workflows, clock):
        run = workflows.request_action_approval(self._gated())
        assert workflows.advance(clock.advance(86400)) == 1
        assert workflows._adhoc == {}
        assert workflows.get_run(run.id).state == RunState.ABORTED

    def test_oldest_finished_runs_pruned(self, executor, router, bus, clock):
        engine = WorkflowEngine(executor, router, bus, clock=clock, max_finished_runs=2)
        engine.register(_wf([_action("a")], wid="quick"))
        engine.register(_wf([{"id": "wait", "type": "approval"}], wid="slow"))
        waiting = engine.trigger("slow")
        finished = []
        for _ in range(3):
            clock.advance(1)
            finished.append(engine.trigger("quick").id)

        assert engine.get_run(finished[0]) is None
        assert {r.id for r in engine.list_runs()} == {waiting.id, finished[1], finished[2]}
        assert engine.get("quick").metrics.total_executions == 3


# ── Reads while a step runs ───────────────────────────

def _reading_executor(engine_ref, seen):
    """Executor that lists runs from another thread while its action runs."""
    def execute(action, context):
        reader = threading.Thread(target=lambda: seen.append(engine_ref[0].list_runs()))
        reader.start()
        reader.join(timeout=2)
        seen.append(reader.is_alive())
        return ActionResult(action_type="preventive_measure", success=True, message="ok")

    executor = MagicMock()
    executor.execute.side_effect = execute
    return executor


class TestConcurrentReads:
    def test_list_runs_not_blocked_by_triggered_step(self, router, bus, clock):
        engine_ref, seen = [], []
        engine = WorkflowEngine(_reading_executor(engine_ref, seen), router, bus, clock=clock)
        engine_ref.append(engine)
        engine.register(_wf([_action("a")]))

        assert engine.trigger("wf").state == RunState.COMPLETED
        runs, blocked = seen
        assert blocked is False
        assert runs[0].state == RunState.RUNNING

    def test_list_runs_not_blocked_after_approval(self, router, bus, clock):
        engine_ref, seen = [], []
        engine = WorkflowEngine(_reading_executor(engine_ref, seen), router, bus, clock=clock)
        engine_ref.append(engine)
        engine.register(_wf([
            {"id": "approve", "type": "approval", "on_success": "go"}, _action("go"),
        ]))
        run = engine.trigger("wf")

        assert engine.record_approval(run.id, "lead", True) is True
        runs, blocked = seen
        assert blocked is False
        assert runs[0].current_step == "go"
        assert engine.get_run(run.id).state == RunState.COMPLETED
