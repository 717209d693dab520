"""Automation Engine - Rule evaluation, execution and scheduling"""
from .condition_evaluator import ConditionEvaluator
from .action_executor import ActionExecutor
from .execution_recorder import ExecutionRecorder
from .event_bus import LocalEventBus
from .rule_validator import RuleValidator
from .workflow_engine import WorkflowEngine
from .routing_engine import RoutingEngine
from .escalation_manager import EscalationManager
from .recurrence import next_run, next_run_for_schedule

__all__ = [
    "ConditionEvaluator",
    "ActionExecutor",
    "ExecutionRecorder",
    "LocalEventBus",
    "RuleValidator",
    "WorkflowEngine",
    "RoutingEngine",
    "EscalationManager",
    "next_run",
    "next_run_for_schedule",
]
