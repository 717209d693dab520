"""
Collaborator interfaces consumed by the automation core.

These abstract base classes define the contracts that store, notification,
team and event-bus implementations must satisfy. MongoDB implementations live
in ``automation.repositories``; thread-safe in-memory ones in
``automation.repositories.memory``.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .models import (
    Ticket, WorkflowRule, RoutingRule, EscalationPath, WorkflowExecution,
    RuleSchedule, DispatchResult
)
from .enums import ExecutionStatus, RuleType, ScheduleState


EventHandler = Callable[[str, Dict[str, Any]], None]


class TicketStore(ABC):
    """Read and patch tickets owned by the surrounding system"""
    
    @abstractmethod
    def fetch_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Return the ticket or None"""
    
    @abstractmethod
    def apply_patch(self, ticket_id: str, fields: Dict[str, Any]) -> Ticket:
        """
        Write fields onto the ticket and return the updated record
        
        Raises:
            TicketNotFoundError: If the ticket does not exist
        """
    
    @abstractmethod
    def list_unresolved(
        self,
        tenant_id: Optional[str] = None,
        limit: int = 200,
        after: Optional[Tuple[datetime, str]] = None
    ) -> List[Ticket]:
        """
        Tickets that are not resolved or closed, oldest first

        Ordered by (created_at, ticket_id). ``after`` is the key of the last
        ticket of the previous page; only tickets strictly past it are returned.
        Status matching ignores case.
        """
    
    def iter_unresolved(self, tenant_id: Optional[str] = None, batch_size: int = 200) -> Iterator[Ticket]:
        """Every unresolved ticket, fetched one page at a time"""
        after: Optional[Tuple[datetime, str]] = None
        while True:
            page = self.list_unresolved(tenant_id=tenant_id, limit=batch_size, after=after)
            yield from page
            if len(page) < batch_size:
                return
            last = page[-1]
            after = (last.created_at, last.ticket_id)


class RuleStore(ABC):
    """Persistence for workflow and routing rules"""
    
    # Workflow rules
    
    @abstractmethod
    def create_workflow_rule(self, rule: WorkflowRule) -> WorkflowRule:
        ...
    
    @abstractmethod
    def get_workflow_rule(self, rule_id: str) -> Optional[WorkflowRule]:
        ...
    
    @abstractmethod
    def update_workflow_rule(self, rule_id: str, updates: Dict[str, Any]) -> WorkflowRule:
        """Set fields on a rule; raises RuleNotFoundError"""
    
    @abstractmethod
    def delete_workflow_rule(self, rule_id: str) -> bool:
        ...
    
    @abstractmethod
    def list_workflow_rules(
        self,
        tenant_id: str,
        rule_type: Optional[RuleType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowRule]:
        """Rules ordered by priority desc, then created_at desc"""
    
    @abstractmethod
    def count_workflow_rules(
        self,
        tenant_id: str,
        rule_type: Optional[RuleType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> int:
        ...

    @abstractmethod
    def find_workflow_rule_by_name(self, tenant_id: str, name: str) -> Optional[WorkflowRule]:
        """Rule of the tenant with exactly this name"""

    @abstractmethod
    def list_active_by_trigger_event(self, tenant_id: str, event_name: str) -> List[WorkflowRule]:
        """Active rules whose triggers match the event, priority desc then created_at desc"""
    
    @abstractmethod
    def increment_execution_count(self, rule_id: str, executed_at: datetime) -> Optional[WorkflowRule]:
        """Atomically bump execution_count and set last_executed"""
    
    @abstractmethod
    def list_due_scheduled(
        self,
        now: datetime,
        limit: int = 100,
        stale_before: Optional[datetime] = None
    ) -> List[WorkflowRule]:
        """
        Active rules with an active schedule that should run now
        
        That is every schedule in SCHEDULED state with next_run <= now and,
        when stale_before is given, every schedule stuck in RUNNING, COMPLETED
        or FAILED whose claimed_at is missing or older than stale_before.
        """
    
    @abstractmethod
    def update_schedule(
        self,
        rule_id: str,
        schedule: RuleSchedule,
        expected_state: Optional[ScheduleState] = None,
        expected_claimed_at: Optional[datetime] = None
    ) -> Optional[WorkflowRule]:
        """
        Replace a rule's schedule
        
        When expected_state is given the write only happens if the stored
        schedule is in that state; when expected_claimed_at is given the
        stored claimed_at must equal it as well. None is returned when the
        write did not happen.
        """
    
    # Routing rules
    
    @abstractmethod
    def create_routing_rule(self, rule: RoutingRule) -> RoutingRule:
        ...
    
    @abstractmethod
    def get_routing_rule(self, rule_id: str) -> Optional[RoutingRule]:
        ...
    
    @abstractmethod
    def update_routing_rule(self, rule_id: str, updates: Dict[str, Any]) -> RoutingRule:
        ...
    
    @abstractmethod
    def delete_routing_rule(self, rule_id: str) -> bool:
        ...
    
    @abstractmethod
    def list_routing_rules(
        self,
        tenant_id: str,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[RoutingRule]:
        ...
    
    @abstractmethod
    def count_routing_rules(
        self,
        tenant_id: str,
        is_active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> int:
        ...
    
    @abstractmethod
    def list_active_routing_rules(self, tenant_id: str) -> List[RoutingRule]:
        """Active routing rules, priority desc then created_at desc"""
    
    @abstractmethod
    def increment_match_count(self, rule_id: str, matched_at: datetime) -> Optional[RoutingRule]:
        """Atomically bump match_count and set last_matched"""


class EscalationPathStore(ABC):
    """Persistence for escalation paths"""
    
    @abstractmethod
    def create_path(self, path: EscalationPath) -> EscalationPath:
        """Insert a path; is_default is ignored here, use set_default"""
    
    @abstractmethod
    def get_path(self, path_id: str) -> Optional[EscalationPath]:
        ...
    
    @abstractmethod
    def update_path(self, path_id: str, updates: Dict[str, Any]) -> EscalationPath:
        ...
    
    @abstractmethod
    def delete_path(self, path_id: str) -> bool:
        ...
    
    @abstractmethod
    def list_paths(self, tenant_id: str, is_active: Optional[bool] = None) -> List[EscalationPath]:
        """Paths ordered by created_at ascending"""
    
    @abstractmethod
    def get_default(self, tenant_id: str) -> Optional[EscalationPath]:
        ...
    
    @abstractmethod
    def set_default(self, tenant_id: str, path_id: str) -> EscalationPath:
        """Make path_id the only default path of the tenant, atomically"""
    
    @abstractmethod
    def clear_default(self, tenant_id: str, path_id: str) -> Optional[EscalationPath]:
        """Unset is_default on one path"""


class ExecutionStore(ABC):
    """Persistence for workflow execution history"""
    
    @abstractmethod
    def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        ...
    
    @abstractmethod
    def update_execution(self, execution_id: str, updates: Dict[str, Any]) -> WorkflowExecution:
        ...
    
    @abstractmethod
    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        ...
    
    @abstractmethod
    def list_for_rule(self, rule_id: str, skip: int = 0, limit: int = 20) -> List[WorkflowExecution]:
        """Newest first"""
    
    @abstractmethod
    def list_for_ticket(
        self,
        ticket_id: str,
        skip: int = 0,
        limit: int = 20,
        tenant_id: Optional[str] = None
    ) -> List[WorkflowExecution]:
        """Newest first; tenant_id restricts the match before paging"""
    
    @abstractmethod
    def count_executions(self, tenant_id: str, status: Optional[ExecutionStatus] = None) -> int:
        ...
    
    @abstractmethod
    def average_duration_ms(self, tenant_id: str) -> float:
        """Mean duration of finished executions, 0 when there are none"""


class NotificationDispatcher(ABC):
    """Best-effort notification delivery"""
    
    @abstractmethod
    def send(self, channel: str, recipients: List[str], payload: Dict[str, Any]) -> DispatchResult:
        ...


class TeamResolver(ABC):
    """Pick the agent a team assignment lands on"""
    
    @abstractmethod
    def resolve_assignee(self, team_id: str) -> Optional[str]:
        """User id of the chosen member, None if the team has no available member"""


class EventBus(ABC):
    """Publish/subscribe for audit events and engine triggers"""
    
    @abstractmethod
    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        ...
    
    @abstractmethod
    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Register a handler for an event name, 'prefix.*' or '*'"""
