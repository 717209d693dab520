"""
Workflow Engine - Event-driven rule execution

For an (event, ticket) pair the engine loads every active workflow rule of
the ticket's tenant whose triggers match the event, evaluates each against a
single snapshot of the ticket, and runs the actions of every rule that
matches. Every match produces one WorkflowExecution record.

Rules are processed in priority order (higher first, newest first on ties).
A rule that blows up is recorded as a failed execution and the remaining
rules still run.
"""
from typing import Any, Dict, List, Optional

from ..config.settings import settings
from ..domain.models import Ticket, WorkflowExecution, WorkflowRule
from ..domain.enums import AutomationEvent, MANUAL_TRIGGER_EVENT, SCHEDULE_TRIGGER_EVENT
from ..domain.errors import AccessDeniedError, RuleNotFoundError, TicketNotFoundError, ValidationError
from ..domain.interfaces import EventBus, RuleStore, TicketStore
from ..domain.triggers import normalize_event
from .action_executor import ActionExecutor
from .condition_evaluator import ConditionEvaluator
from .execution_recorder import ExecutionRecorder
from ..utils.idgen import generate_correlation_id
from ..utils.time import utc_now
from ..utils.logger import get_logger, get_correlation_id, set_correlation_id

logger = get_logger(__name__)


# Events emitted by the automation core itself; never fed back into rules
INTERNAL_EVENTS = frozenset(e.value for e in AutomationEvent)


class WorkflowEngine:
    """
    Multi-match workflow rule engine
    
    Responsibilities:
    - Resolve trigger-matching rules for an event
    - Evaluate conditions on one shared ticket snapshot
    - Apply actions of every matching rule via the ActionExecutor
    - Record executions and bump rule counters
    """
    
    def __init__(
        self,
        ticket_store: TicketStore,
        rule_store: RuleStore,
        action_executor: ActionExecutor,
        recorder: ExecutionRecorder,
        event_bus: Optional[EventBus] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None
    ):
        self.ticket_store = ticket_store
        self.rule_store = rule_store
        self.action_executor = action_executor
        self.recorder = recorder
        self.event_bus = event_bus
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
    
    # =========================================================================
    # Entry points
    # =========================================================================
    
    def execute_for_ticket(
        self,
        ticket_id: str,
        event_name: str,
        actor_id: Optional[str] = None
    ) -> List[WorkflowExecution]:
        """
        Run every matching workflow rule for an event on a ticket
        
        Args:
            ticket_id: Ticket the event happened on
            event_name: Event name, matched case-insensitively
            actor_id: User who caused the event
            
        Returns:
            Executions created, in the order the rules ran (possibly empty)
            
        Raises:
            TicketNotFoundError: If the ticket does not exist
        """
        ticket = self.ticket_store.fetch_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        
        event = normalize_event(event_name)
        snapshot = ticket.snapshot()
        rules = self._ordered(self.rule_store.list_active_by_trigger_event(ticket.tenant_id, event))
        
        logger.info(
            f"Evaluating {len(rules)} workflow rule(s) for {event} on ticket {ticket_id}",
            extra={"ticket_id": ticket_id, "tenant_id": ticket.tenant_id, "event": event}
        )
        
        executions: List[WorkflowExecution] = []
        for rule in rules:
            execution = self._run_rule(rule, ticket, snapshot, event, actor_id)
            if execution is not None:
                executions.append(execution)
        return executions
    
    def handle_event(self, event_name: str, payload: Dict[str, Any]) -> List[WorkflowExecution]:
        """
        Event bus subscriber
        
        Reads ``ticket_id`` and ``actor_id`` (or ``user_id``) from the payload.
        Events without a ticket and tickets that no longer exist are skipped.
        """
        event = normalize_event(event_name)
        if event in INTERNAL_EVENTS:
            return []
        
        ticket_id = payload.get("ticket_id")
        if not ticket_id:
            logger.debug(f"Ignoring {event}: no ticket_id in payload", extra={"event": event})
            return []
        
        if not get_correlation_id():
            set_correlation_id(generate_correlation_id())
        
        actor_id = payload.get("actor_id") or payload.get("user_id")
        try:
            return self.execute_for_ticket(ticket_id, event, actor_id)
        except TicketNotFoundError:
            logger.warning(
                f"Skipping {event}: ticket {ticket_id} not found",
                extra={"ticket_id": ticket_id, "event": event}
            )
            return []
    
    def subscribe(self, event_bus: EventBus, pattern: str = "ticket.*") -> None:
        """Feed events matching ``pattern`` from a bus into this engine"""
        event_bus.subscribe(pattern, self.handle_event)
    
    def execute_scheduled_rule(self, rule_id: str, actor_id: str = "scheduler") -> List[WorkflowExecution]:
        """
        Run one scheduled rule against every unresolved ticket of its tenant
        
        Tickets are read in pages of ``escalation_batch_size`` until the
        store runs out.
        
        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = self.rule_store.get_workflow_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Workflow rule {rule_id} not found", details={"rule_id": rule_id})
        
        if not rule.is_active:
            logger.info(f"Scheduled rule {rule_id} is inactive, skipping", extra={"rule_id": rule_id})
            return []
        
        tickets = self.ticket_store.iter_unresolved(
            tenant_id=rule.tenant_id, batch_size=settings.escalation_batch_size
        )
        
        executions: List[WorkflowExecution] = []
        checked = 0
        for ticket in tickets:
            checked += 1
            execution = self._run_rule(
                rule, ticket, ticket.snapshot(), SCHEDULE_TRIGGER_EVENT, actor_id
            )
            if execution is not None:
                executions.append(execution)
        
        logger.info(
            f"Scheduled rule {rule_id} matched {len(executions)} of {checked} ticket(s)",
            extra={"rule_id": rule_id, "tenant_id": rule.tenant_id}
        )
        return executions
    
    def execute_rule(
        self,
        rule_id: str,
        ticket_id: str,
        actor_id: Optional[str] = None
    ) -> Optional[WorkflowExecution]:
        """
        Run one rule by hand against one ticket
        
        Returns:
            The execution, or None when the rule's conditions do not match
            
        Raises:
            RuleNotFoundError: If the rule does not exist
            ValidationError: If the rule is inactive
            TicketNotFoundError: If the ticket does not exist
        """
        rule = self.rule_store.get_workflow_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Workflow rule {rule_id} not found", details={"rule_id": rule_id})
        if not rule.is_active:
            raise ValidationError(f"Workflow rule {rule_id} is not active", details={"rule_id": rule_id})
        
        ticket = self.ticket_store.fetch_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        if ticket.tenant_id != rule.tenant_id:
            raise AccessDeniedError(
                "Ticket belongs to another tenant", details={"rule_id": rule_id, "ticket_id": ticket_id}
            )
        
        return self._run_rule(rule, ticket, ticket.snapshot(), MANUAL_TRIGGER_EVENT, actor_id)
    
    # =========================================================================
    # Rule pass
    # =========================================================================
    
    @staticmethod
    def _ordered(rules: List[WorkflowRule]) -> List[WorkflowRule]:
        """Priority descending, then newest first"""
        return sorted(rules, key=lambda r: (r.priority, r.created_at), reverse=True)
    
    def _run_rule(
        self,
        rule: WorkflowRule,
        ticket: Ticket,
        snapshot: Dict[str, Any],
        event: str,
        actor_id: Optional[str]
    ) -> Optional[WorkflowExecution]:
        """Evaluate one rule and, on a match, execute and record it"""
        if not self.condition_evaluator.evaluate(rule.conditions, snapshot):
            return None
        
        try:
            execution = self.recorder.start(rule, snapshot, actor_id, event)
        except Exception as e:
            logger.error(
                f"Could not record execution of rule {rule.rule_id}: {e}",
                extra={"rule_id": rule.rule_id, "ticket_id": ticket.ticket_id},
                exc_info=True
            )
            return None
        
        try:
            results = self.action_executor.execute(rule.actions, ticket)
            execution = self.recorder.finish(execution, results)
        except Exception as e:
            logger.error(
                f"Rule {rule.rule_id} failed on ticket {ticket.ticket_id}: {e}",
                extra={"rule_id": rule.rule_id, "ticket_id": ticket.ticket_id},
                exc_info=True
            )
            execution = self.recorder.fail(execution, str(e))
        
        try:
            self.rule_store.increment_execution_count(rule.rule_id, utc_now())
        except Exception as e:
            logger.error(
                f"Failed to update execution count of rule {rule.rule_id}: {e}",
                extra={"rule_id": rule.rule_id}
            )
        
        self._emit(AutomationEvent.WORKFLOW_EXECUTED, {
            "execution_id": execution.execution_id,
            "rule_id": rule.rule_id,
            "ticket_id": ticket.ticket_id,
            "tenant_id": ticket.tenant_id,
            "trigger_event": event,
            "actor_id": actor_id,
            "status": execution.status.value,
        })
        return execution
    
    def _emit(self, event: AutomationEvent, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event.value, payload)
