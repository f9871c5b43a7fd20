"""Decision rule and workflow loading from YAML."""
import logging
import yaml
from pathlib import Path

from automation.conditions import OPERATOR_MAP
from models.decisions import DecisionCondition, DecisionRule, build_action
from models.enums import ConditionType, StepType, TriggerType, WorkflowStatus
from models.events import FIELDS_BY_KIND
from models.workflows import AutomationWorkflow, WorkflowStep, WorkflowTrigger

logger = logging.getLogger("opswatch.automation.rules")


class RuleDefinitionError(ValueError):
    """A rule or workflow definition that cannot be loaded."""


def parse_condition(c):
    ctype = ConditionType(c.get("type", "prediction"))
    field = c.get("field", "")
    operator = c.get("operator")
    if operator not in OPERATOR_MAP:
        raise RuleDefinitionError(f"invalid operator {operator!r}")
    allowed = FIELDS_BY_KIND.get(ctype.value)
    if allowed is not None and field not in allowed:
        raise RuleDefinitionError(f"field {field!r} is not available on {ctype.value} events")
    return DecisionCondition(
        type=ctype,
        field=field,
        operator=operator,
        value=c.get("value"),
        confidence=float(c.get("confidence", 0) or 0),
    )


def parse_action(a):
    return build_action(
        type=a["type"],
        parameters=a.get("parameters", {}),
        automation_level=a.get("automation_level", "fully_automated"),
        max_impact=a.get("max_impact", 1.0),
        rollbackable=a.get("rollbackable", False),
        approvers=a.get("approvers"),
    )


def parse_rule(r):
    """Build a DecisionRule from a mapping; raises RuleDefinitionError when invalid."""
    if "id" not in r:
        raise RuleDefinitionError("rule without id")
    try:
        conditions = [parse_condition(c) for c in r.get("conditions", [])]
        actions = [parse_action(a) for a in r.get("actions", [])]
    except (KeyError, ValueError) as e:
        raise RuleDefinitionError(f"rule {r['id']}: {e}") from e
    priority = int(r.get("priority", 5))
    if not 1 <= priority <= 10:
        raise RuleDefinitionError(f"rule {r['id']}: priority {priority} outside 1-10")
    return DecisionRule(
        id=r["id"],
        name=r.get("name", r["id"]),
        description=r.get("description", ""),
        conditions=conditions,
        actions=actions,
        priority=priority,
        enabled=r.get("enabled", True),
        approval_required=r.get("approval_required", False),
        approvers=list(r.get("approvers", [])),
    )


def parse_workflow(w):
    """Build an AutomationWorkflow from a mapping. Graph checks happen at registration."""
    if "id" not in w:
        raise RuleDefinitionError("workflow without id")
    try:
        trigger = w.get("trigger", {})
        steps = [
            WorkflowStep(
                id=s["id"],
                type=StepType(s.get("type", "action")),
                name=s.get("name", s["id"]),
                parameters=dict(s.get("parameters", {})),
                on_success=s.get("on_success"),
                on_failure=s.get("on_failure"),
                timeout=s.get("timeout"),
            )
            for s in w.get("steps", [])
        ]
        return AutomationWorkflow(
            id=w["id"],
            name=w.get("name", w["id"]),
            description=w.get("description", ""),
            trigger=WorkflowTrigger(
                type=TriggerType(trigger.get("type", "manual")),
                conditions=list(trigger.get("conditions", [])),
                frequency=trigger.get("frequency"),
            ),
            steps=steps,
            status=WorkflowStatus(w.get("status", "active")),
        )
    except (KeyError, ValueError) as e:
        raise RuleDefinitionError(f"workflow {w['id']}: {e}") from e


class AutomationRulesManager:
    def __init__(self, rules_path="config/automation_rules.yaml"):
        self.rules_path = Path(rules_path)
        self.rules = []
        self.workflows = []
        self.load()

    def load(self):
        if not self.rules_path.exists():
            logger.warning(f"Automation rules file not found: {self.rules_path}")
            return
        with open(self.rules_path) as f:
            data = yaml.safe_load(f) or {}
        self.rules = self._parse_all(data.get("rules", []), parse_rule, "rule")
        self.workflows = self._parse_all(data.get("workflows", []), parse_workflow, "workflow")
        logger.info(f"Loaded {len(self.rules)} rules, {len(self.workflows)} workflows")

    def _parse_all(self, raw, parser, label):
        parsed = []
        for item in raw:
            try:
                parsed.append(parser(item))
            except RuleDefinitionError as e:
                logger.warning(f"Skipping invalid {label}: {e}")
        return parsed

    def get_enabled_rules(self):
        return [r for r in self.rules if r.enabled]

    def get_rule(self, rule_id):
        for r in self.rules:
            if r.id == rule_id:
                return r
        return None
