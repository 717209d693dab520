"""Routing Engine - Single-winner ticket routing"""
from typing import Optional

from ..domain.models import RoutingOutcome
from ..domain.enums import AutomationEvent
from ..domain.errors import TicketNotFoundError
from ..domain.interfaces import EventBus, RuleStore, TicketStore
from .action_executor import ActionExecutor
from .condition_evaluator import ConditionEvaluator
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class RoutingEngine:
    """
    Route a ticket with the first matching routing rule
    
    Active rules are tried in priority order (higher first, newest first on
    ties). Only the first rule whose conditions pass has its actions applied
    and its match counter bumped.
    """
    
    def __init__(
        self,
        ticket_store: TicketStore,
        rule_store: RuleStore,
        action_executor: ActionExecutor,
        event_bus: Optional[EventBus] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None
    ):
        self.ticket_store = ticket_store
        self.rule_store = rule_store
        self.action_executor = action_executor
        self.event_bus = event_bus
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
    
    def route_ticket(self, ticket_id: str) -> Optional[RoutingOutcome]:
        """
        Apply the winning routing rule to a ticket
        
        Returns:
            RoutingOutcome of the winning rule, or None when no rule matches
            
        Raises:
            TicketNotFoundError: If the ticket does not exist
        """
        ticket = self.ticket_store.fetch_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        
        snapshot = ticket.snapshot()
        rules = sorted(
            self.rule_store.list_active_routing_rules(ticket.tenant_id),
            key=lambda r: (r.priority, r.created_at),
            reverse=True
        )
        
        winner = next(
            (r for r in rules if self.condition_evaluator.evaluate(r.conditions, snapshot)),
            None
        )
        if winner is None:
            logger.debug(
                f"No routing rule matched ticket {ticket_id}",
                extra={"ticket_id": ticket_id, "tenant_id": ticket.tenant_id}
            )
            return None
        
        results = self.action_executor.execute(winner.actions, ticket)
        self.rule_store.increment_match_count(winner.rule_id, utc_now())
        
        logger.info(
            f"Ticket {ticket_id} routed by rule {winner.rule_id}",
            extra={
                "ticket_id": ticket_id,
                "tenant_id": ticket.tenant_id,
                "rule_id": winner.rule_id
            }
        )
        
        if self.event_bus is not None:
            self.event_bus.emit(AutomationEvent.ROUTING_RULE_MATCHED.value, {
                "rule_id": winner.rule_id,
                "ticket_id": ticket_id,
                "tenant_id": ticket.tenant_id,
                "failed_actions": [r.action_type for r in results if not r.success],
            })
        
        return RoutingOutcome(
            ticket_id=ticket_id,
            rule_id=winner.rule_id,
            rule_name=winner.name,
            results=results
        )
