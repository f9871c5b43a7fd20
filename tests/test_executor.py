"""Tests for the action executor and execution outcome aggregation."""
import pytest
from unittest.mock import MagicMock

from automation.executor import (
    ActionExecutor, ApprovalRequiredError, aggregate_outcome, calculate_impact,
)
from models.decisions import ActionResult, ApprovalGatedAction, AutomatedAction, build_action
from models.enums import ActionType, AutomationLevel, Outcome, Severity
from models.events import PredictionEvent


def _result(success, level="fully_automated", impact=0.2, deferred=False):
    return ActionResult(action_type="notification", success=success, impact=impact,
                        automation_level=level, deferred=deferred)


# ── Outcome aggregation ───────────────────────────────

class TestAggregateOutcome:
    def test_mixed_results_partial(self):
        assert aggregate_outcome([_result(True), _result(False), _result(True)]) == Outcome.PARTIAL

    def test_all_success(self):
        assert aggregate_outcome([_result(True), _result(True), _result(True)]) == Outcome.SUCCESS

    def test_all_failed_fully_automated_is_partial(self):
        assert aggregate_outcome([_result(False)]) == Outcome.PARTIAL
        assert aggregate_outcome([_result(False), _result(False)]) == Outcome.PARTIAL

    def test_all_failed_without_fully_automated(self):
        results = [_result(False, level="semi_automated"), _result(False, level="semi_automated")]
        assert aggregate_outcome(results) == Outcome.FAILURE

    def test_semi_automated_failure_does_not_make_partial(self):
        results = [_result(True), _result(False, level="semi_automated")]
        assert aggregate_outcome(results) == Outcome.SUCCESS

    def test_deferred_results_not_counted(self):
        results = [_result(True), _result(True, level="manual_approval", deferred=True)]
        assert aggregate_outcome(results) == Outcome.SUCCESS

    def test_only_deferred_is_pending(self):
        assert aggregate_outcome([_result(True, deferred=True)]) == Outcome.PENDING

    def test_nothing_attempted(self):
        assert aggregate_outcome([]) == Outcome.SUCCESS

    def test_impact_averages_over_attempted(self):
        impact = calculate_impact([_result(True, impact=0.3), _result(False, impact=0.5), _result(True, impact=0.3)])
        assert impact.overall == pytest.approx(0.2)
        assert impact.positive == pytest.approx(0.2)
        assert impact.negative == 0


# ── ActionExecutor ────────────────────────────────────

@pytest.fixture
def router():
    r = MagicMock()
    r.announce.return_value = 1
    return r


@pytest.fixture
def executor(bus, router, clock):
    return ActionExecutor(bus, router, clock=clock)


def _event():
    return PredictionEvent(entity_type="cluster", entity_id="cluster-7", confidence=0.9,
                           description="Emergence predicted", outcome="emergence", probability=0.85)


class TestActionExecutor:
    def test_notification(self, executor, router, recorder):
        action = AutomatedAction(type=ActionType.NOTIFICATION, max_impact=0.3,
                                 parameters={"recipients": ["team_leads"], "urgency": "high"})
        result = executor.execute(action, _event())
        assert result.success is True
        assert result.impact == pytest.approx(0.2)
        assert "team_leads" in result.message
        severity, title, description = router.announce.call_args[0][:3]
        assert severity == Severity.CRITICAL
        assert description == "Emergence predicted"
        topic, payload = recorder[0]
        assert topic == "action:notification"
        assert payload["entity_id"] == "cluster-7"

    def test_impact_capped_by_max_impact(self, executor):
        action = AutomatedAction(type=ActionType.RESOURCE_ALLOCATION, max_impact=0.25)
        assert executor.execute(action, _event()).impact == pytest.approx(0.25)

    def test_escalation_includes_recommendations(self, executor, router):
        action = AutomatedAction(type=ActionType.ESCALATION,
                                 parameters={"escalate_to": "project_manager", "include_recommendations": True})
        event = {"description": "Failure likely", "recommendations": [{"action": "Add reviewers"}]}
        result = executor.execute(action, event)
        assert result.success
        assert result.data == {"escalate_to": "project_manager"}
        assert "Add reviewers" in router.announce.call_args[0][2]

    def test_preventive_measure_defaults_target_to_entity(self, executor):
        action = AutomatedAction(type=ActionType.PREVENTIVE_MEASURE, parameters={"action": "increase_monitoring"})
        result = executor.execute(action, _event())
        assert result.data == {"measure": "increase_monitoring", "target": "cluster-7"}

    def test_workflow_trigger_starts_run(self, executor):
        run = MagicMock()
        run.id = "run_1"
        run.state.value = "running"
        executor.workflows = MagicMock()
        executor.workflows.trigger.return_value = run
        action = AutomatedAction(type=ActionType.WORKFLOW_TRIGGER, parameters={"workflow_id": "resource_rebalancing"})
        result = executor.execute(action, _event())
        assert result.success
        assert result.data["run_id"] == "run_1"
        assert executor.workflows.trigger.call_args[0][0] == "resource_rebalancing"

    def test_workflow_trigger_without_id_fails(self, executor):
        executor.workflows = MagicMock()
        result = executor.execute(AutomatedAction(type=ActionType.WORKFLOW_TRIGGER), _event())
        assert result.success is False
        assert result.impact == 0

    def test_unknown_workflow_fails(self, executor):
        executor.workflows = MagicMock()
        executor.workflows.trigger.return_value = None
        action = AutomatedAction(type=ActionType.WORKFLOW_TRIGGER, parameters={"workflow_id": "ghost"})
        assert executor.execute(action, _event()).success is False

    def test_handler_exception_is_captured(self, executor, router):
        router.announce.side_effect = RuntimeError("smtp down")
        result = executor.execute(AutomatedAction(type=ActionType.NOTIFICATION), _event())
        assert result.success is False
        assert "smtp down" in result.message

    def test_approval_gated_action_refused(self, executor):
        action = ApprovalGatedAction(type=ActionType.RESOURCE_ALLOCATION, approvers=["resource_manager"])
        with pytest.raises(ApprovalRequiredError) as exc:
            executor.execute(action, _event())
        assert exc.value.action is action

    def test_works_without_router(self, bus, clock):
        executor = ActionExecutor(bus, None, clock=clock)
        assert executor.execute(AutomatedAction(type=ActionType.NOTIFICATION), _event()).success


class TestActionTypes:
    def test_automated_action_rejects_manual_approval(self):
        with pytest.raises(ValueError):
            AutomatedAction(type=ActionType.NOTIFICATION, automation_level=AutomationLevel.MANUAL_APPROVAL)

    def test_build_action_picks_class(self):
        assert isinstance(build_action("notification"), AutomatedAction)
        gated = build_action("resource_allocation", automation_level="manual_approval", approvers=["a"])
        assert isinstance(gated, ApprovalGatedAction)
        assert gated.automation_level == AutomationLevel.MANUAL_APPROVAL
