"""Decision rules, action execution and workflows."""
from automation.engine import DecisionRuleEngine
from automation.executor import ActionExecutor, ApprovalRequiredError, aggregate_outcome, calculate_impact
from automation.rules_manager import AutomationRulesManager, RuleDefinitionError
from automation.workflows import WorkflowEngine, WorkflowValidationError
