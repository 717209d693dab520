"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class RuleType(str, Enum):
    """Workflow rule category"""
    ROUTING = "routing"
    ESCALATION = "escalation"
    NOTIFICATION = "notification"
    CUSTOM = "custom"


class ConditionOperator(str, Enum):
    """Operators for rule conditions"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_THAN = "less_than"
    LESS_OR_EQUAL = "less_or_equal"
    IN = "in"
    CONTAINS = "contains"
    BETWEEN = "between"


class ActionType(str, Enum):
    """Ticket mutations a rule may perform"""
    ASSIGN_TO_USER = "assign_to_user"
    ASSIGN_TO_TEAM = "assign_to_team"
    SET_PRIORITY = "set_priority"
    SET_STATUS = "set_status"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    SEND_NOTIFICATION = "send_notification"


class ExecutionStatus(str, Enum):
    """Workflow execution status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ScheduleFrequency(str, Enum):
    """Recurrence frequency for scheduled rules"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class ScheduleState(str, Enum):
    """Scheduler state machine: SCHEDULED -> RUNNING -> COMPLETED|FAILED -> SCHEDULED"""
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Outcome of the last scheduled run"""
    SUCCESS = "success"
    ERROR = "error"


class AssignTargetType(str, Enum):
    """Escalation step assignment target"""
    USER = "user"
    TEAM = "team"


class AutomationEvent(str, Enum):
    """Events emitted on the event bus"""
    WORKFLOW_RULE_CREATED = "workflow.rule.created"
    WORKFLOW_RULE_UPDATED = "workflow.rule.updated"
    WORKFLOW_RULE_DELETED = "workflow.rule.deleted"
    WORKFLOW_EXECUTED = "workflow.executed"
    ROUTING_RULE_CREATED = "routing.rule.created"
    ROUTING_RULE_UPDATED = "routing.rule.updated"
    ROUTING_RULE_DELETED = "routing.rule.deleted"
    ROUTING_RULE_MATCHED = "routing.rule.matched"
    ESCALATION_PATH_CREATED = "escalation.path.created"
    ESCALATION_PATH_UPDATED = "escalation.path.updated"
    ESCALATION_PATH_DELETED = "escalation.path.deleted"
    ESCALATION_STEP_APPLIED = "escalation.step.applied"


# Ticket statuses that stop escalation
RESOLVED_TICKET_STATUSES = frozenset({"resolved", "closed"})

SCHEDULE_TRIGGER_EVENT = "schedule"
MANUAL_TRIGGER_EVENT = "manual"
