"""
In-memory adapters for every collaborator interface.

Thread-safe implementations used when embedding the automation core without
MongoDB and throughout the test suite. Counter increments, conditional
schedule writes and the default-path swap all happen under one lock per
store.
"""
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..domain.models import (
    DispatchResult, EscalationPath, RoutingRule, RuleSchedule, Ticket, WorkflowExecution,
    WorkflowRule
)
from ..domain.enums import ExecutionStatus, RESOLVED_TICKET_STATUSES, RuleType, ScheduleState
from ..domain.errors import (
    AlreadyExistsError, EscalationPathNotFoundError, NotFoundError, RuleNotFoundError,
    TicketNotFoundError
)
from ..domain.interfaces import (
    EscalationPathStore, ExecutionStore, NotificationDispatcher, RuleStore, TeamResolver,
    TicketStore
)
from ..domain.triggers import normalize_event, trigger_patterns
from ..engine.event_bus import LocalEventBus
from ..utils.time import utc_now


def _rule_order(rule: Any) -> Tuple[int, datetime]:
    return (rule.priority, rule.created_at)


def _matches_search(name: str, search: Optional[str]) -> bool:
    return not search or search.lower() in (name or "").lower()


def _is_due(schedule: RuleSchedule, now: datetime) -> bool:
    return (
        schedule.state == ScheduleState.SCHEDULED
        and schedule.next_run is not None
        and schedule.next_run <= now
    )


def _is_abandoned(schedule: RuleSchedule, stale_before: Optional[datetime]) -> bool:
    """Claimed, never released, and older than the lease"""
    if stale_before is None or schedule.state == ScheduleState.SCHEDULED:
        return False
    return schedule.claimed_at is None or schedule.claimed_at < stale_before


class InMemoryTicketStore(TicketStore):
    """Ticket store backed by a dict"""

    def __init__(self, tickets: Optional[List[Ticket]] = None):
        self._lock = threading.Lock()
        self._tickets: Dict[str, Ticket] = {}
        for ticket in tickets or []:
            self.add(ticket)

    def add(self, ticket: Ticket) -> Ticket:
        with self._lock:
            self._tickets[ticket.ticket_id] = ticket.model_copy(deep=True)
        return ticket

    def fetch_by_id(self, ticket_id: str) -> Optional[Ticket]:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            return ticket.model_copy(deep=True) if ticket else None

    def apply_patch(self, ticket_id: str, fields: Dict[str, Any]) -> Ticket:
        with self._lock:
            current = self._tickets.get(ticket_id)
            if current is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
            updated = Ticket.model_validate({**current.model_dump(), **fields, "updated_at": utc_now()})
            self._tickets[ticket_id] = updated
            return updated.model_copy(deep=True)

    def list_unresolved(
        self,
        tenant_id: Optional[str] = None,
        limit: int = 200,
        after: Optional[Tuple[datetime, str]] = None
    ) -> List[Ticket]:
        with self._lock:
            tickets = [
                t for t in self._tickets.values()
                if (t.status or "").lower() not in RESOLVED_TICKET_STATUSES
                and (tenant_id is None or t.tenant_id == tenant_id)
                and (after is None or (t.created_at, t.ticket_id) > after)
            ]
        tickets.sort(key=lambda t: (t.created_at, t.ticket_id))
        return [t.model_copy(deep=True) for t in tickets[:limit]]


class InMemoryRuleStore(RuleStore):
    """Workflow and routing rules backed by dicts"""

    def __init__(self):
        self._lock = threading.Lock()
        self._workflow_rules: Dict[str, WorkflowRule] = {}
        self._routing_rules: Dict[str, RoutingRule] = {}

    # Workflow rules

    def create_workflow_rule(self, rule: WorkflowRule) -> WorkflowRule:
        with self._lock:
            if rule.rule_id in self._workflow_rules:
                raise AlreadyExistsError(f"Workflow rule {rule.rule_id} already exists")
            self._workflow_rules[rule.rule_id] = rule.model_copy(deep=True)
        return rule

    def get_workflow_rule(self, rule_id: str) -> Optional[WorkflowRule]:
        with self._lock:
            rule = self._workflow_rules.get(rule_id)
            return rule.model_copy(deep=True) if rule else None

    def update_workflow_rule(self, rule_id: str, updates: Dict[str, Any]) -> WorkflowRule:
        with self._lock:
            current = self._workflow_rules.get(rule_id)
            if current is None:
                raise RuleNotFoundError(f"Workflow rule {rule_id} not found", details={"rule_id": rule_id})
            updated = WorkflowRule.model_validate({**current.model_dump(), **updates})
            self._workflow_rules[rule_id] = updated
            return updated.model_copy(deep=True)

    def delete_workflow_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._workflow_rules.pop(rule_id, None) is not None

    def _filter_workflow_rules(
        self,
        tenant_id: str,
        rule_type: Optional[RuleType],
        is_active: Optional[bool],
        search: Optional[str]
    ) -> List[WorkflowRule]:
        with self._lock:
            rules = [
                r for r in self._workflow_rules.values()
                if r.tenant_id == tenant_id
                and (rule_type is None or r.type == RuleType(rule_type))
                and (is_active is None or r.is_active == is_active)
                and _matches_search(r.name, search)
            ]
        return sorted(rules, key=_rule_order, reverse=True)

    def list_workflow_rules(
        self,
        tenant_id: str,
        rule_type: Optional[RuleType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowRule]:
        rules = self._filter_workflow_rules(tenant_id, rule_type, is_active, search)
        return [r.model_copy(deep=True) for r in rules[skip:skip + limit]]

    def count_workflow_rules(
        self,
        tenant_id: str,
        rule_type: Optional[RuleType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> int:
        return len(self._filter_workflow_rules(tenant_id, rule_type, is_active, search))

    def find_workflow_rule_by_name(self, tenant_id: str, name: str) -> Optional[WorkflowRule]:
        with self._lock:
            for rule in self._workflow_rules.values():
                if rule.tenant_id == tenant_id and rule.name == name:
                    return rule.model_copy(deep=True)
        return None

    def list_active_by_trigger_event(self, tenant_id: str, event_name: str) -> List[WorkflowRule]:
        patterns = set(trigger_patterns(event_name))
        with self._lock:
            rules = [
                r for r in self._workflow_rules.values()
                if r.tenant_id == tenant_id and r.is_active
                and any(normalize_event(t) in patterns for t in r.triggers)
            ]
        return [r.model_copy(deep=True) for r in sorted(rules, key=_rule_order, reverse=True)]

    def increment_execution_count(self, rule_id: str, executed_at: datetime) -> Optional[WorkflowRule]:
        with self._lock:
            rule = self._workflow_rules.get(rule_id)
            if rule is None:
                return None
            rule.execution_count += 1
            rule.last_executed = executed_at
            return rule.model_copy(deep=True)

    def list_due_scheduled(
        self,
        now: datetime,
        limit: int = 100,
        stale_before: Optional[datetime] = None
    ) -> List[WorkflowRule]:
        with self._lock:
            rules = [
                r for r in self._workflow_rules.values()
                if r.is_active and r.schedule is not None
                and r.schedule.is_active
                and (_is_due(r.schedule, now) or _is_abandoned(r.schedule, stale_before))
            ]
        rules.sort(key=lambda r: r.schedule.next_run or now)
        return [r.model_copy(deep=True) for r in rules[:limit]]

    def update_schedule(
        self,
        rule_id: str,
        schedule: RuleSchedule,
        expected_state: Optional[ScheduleState] = None,
        expected_claimed_at: Optional[datetime] = None
    ) -> Optional[WorkflowRule]:
        with self._lock:
            rule = self._workflow_rules.get(rule_id)
            if rule is None:
                return None
            if expected_state is not None:
                if rule.schedule is None or rule.schedule.state != expected_state:
                    return None
            if expected_claimed_at is not None:
                if rule.schedule is None or rule.schedule.claimed_at != expected_claimed_at:
                    return None
            rule.schedule = schedule.model_copy(deep=True)
            return rule.model_copy(deep=True)

    # Routing rules

    def create_routing_rule(self, rule: RoutingRule) -> RoutingRule:
        with self._lock:
            if rule.rule_id in self._routing_rules:
                raise AlreadyExistsError(f"Routing rule {rule.rule_id} already exists")
            self._routing_rules[rule.rule_id] = rule.model_copy(deep=True)
        return rule

    def get_routing_rule(self, rule_id: str) -> Optional[RoutingRule]:
        with self._lock:
            rule = self._routing_rules.get(rule_id)
            return rule.model_copy(deep=True) if rule else None

    def update_routing_rule(self, rule_id: str, updates: Dict[str, Any]) -> RoutingRule:
        with self._lock:
            current = self._routing_rules.get(rule_id)
            if current is None:
                raise RuleNotFoundError(f"Routing rule {rule_id} not found", details={"rule_id": rule_id})
            updated = RoutingRule.model_validate({**current.model_dump(), **updates})
            self._routing_rules[rule_id] = updated
            return updated.model_copy(deep=True)

    def delete_routing_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._routing_rules.pop(rule_id, None) is not None

    def _filter_routing_rules(
        self,
        tenant_id: str,
        is_active: Optional[bool],
        search: Optional[str]
    ) -> List[RoutingRule]:
        with self._lock:
            rules = [
                r for r in self._routing_rules.values()
                if r.tenant_id == tenant_id
                and (is_active is None or r.is_active == is_active)
                and _matches_search(r.name, search)
            ]
        return sorted(rules, key=_rule_order, reverse=True)

    def list_routing_rules(
        self,
        tenant_id: str,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[RoutingRule]:
        rules = self._filter_routing_rules(tenant_id, is_active, search)
        return [r.model_copy(deep=True) for r in rules[skip:skip + limit]]

    def count_routing_rules(
        self,
        tenant_id: str,
        is_active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> int:
        return len(self._filter_routing_rules(tenant_id, is_active, search))

    def list_active_routing_rules(self, tenant_id: str) -> List[RoutingRule]:
        return self.list_routing_rules(tenant_id, is_active=True, limit=10_000)

    def increment_match_count(self, rule_id: str, matched_at: datetime) -> Optional[RoutingRule]:
        with self._lock:
            rule = self._routing_rules.get(rule_id)
            if rule is None:
                return None
            rule.match_count += 1
            rule.last_matched = matched_at
            return rule.model_copy(deep=True)


class InMemoryEscalationPathStore(EscalationPathStore):
    """Escalation paths backed by a dict; the default swap runs under the store lock"""

    def __init__(self):
        self._lock = threading.Lock()
        self._paths: Dict[str, EscalationPath] = {}

    def create_path(self, path: EscalationPath) -> EscalationPath:
        stored = path.model_copy(update={"is_default": False}, deep=True)
        with self._lock:
            if path.path_id in self._paths:
                raise AlreadyExistsError(f"Escalation path {path.path_id} already exists")
            self._paths[path.path_id] = stored
        return stored.model_copy(deep=True)

    def get_path(self, path_id: str) -> Optional[EscalationPath]:
        with self._lock:
            path = self._paths.get(path_id)
            return path.model_copy(deep=True) if path else None

    def update_path(self, path_id: str, updates: Dict[str, Any]) -> EscalationPath:
        updates = {k: v for k, v in updates.items() if k != "is_default"}
        with self._lock:
            current = self._paths.get(path_id)
            if current is None:
                raise EscalationPathNotFoundError(
                    f"Escalation path {path_id} not found", details={"path_id": path_id}
                )
            updated = EscalationPath.model_validate({**current.model_dump(), **updates})
            self._paths[path_id] = updated
            return updated.model_copy(deep=True)

    def delete_path(self, path_id: str) -> bool:
        with self._lock:
            return self._paths.pop(path_id, None) is not None

    def list_paths(self, tenant_id: str, is_active: Optional[bool] = None) -> List[EscalationPath]:
        with self._lock:
            paths = [
                p for p in self._paths.values()
                if p.tenant_id == tenant_id and (is_active is None or p.is_active == is_active)
            ]
        paths.sort(key=lambda p: p.created_at)
        return [p.model_copy(deep=True) for p in paths]

    def get_default(self, tenant_id: str) -> Optional[EscalationPath]:
        with self._lock:
            for path in self._paths.values():
                if path.tenant_id == tenant_id and path.is_default:
                    return path.model_copy(deep=True)
        return None

    def set_default(self, tenant_id: str, path_id: str) -> EscalationPath:
        with self._lock:
            target = self._paths.get(path_id)
            if target is None or target.tenant_id != tenant_id:
                raise EscalationPathNotFoundError(
                    f"Escalation path {path_id} not found", details={"path_id": path_id}
                )
            now = utc_now()
            for path in self._paths.values():
                if path.tenant_id == tenant_id and path.is_default and path.path_id != path_id:
                    path.is_default = False
                    path.updated_at = now
            target.is_default = True
            target.updated_at = now
            return target.model_copy(deep=True)

    def clear_default(self, tenant_id: str, path_id: str) -> Optional[EscalationPath]:
        with self._lock:
            path = self._paths.get(path_id)
            if path is None or path.tenant_id != tenant_id:
                return None
            path.is_default = False
            path.updated_at = utc_now()
            return path.model_copy(deep=True)


class InMemoryExecutionStore(ExecutionStore):
    """Execution history backed by a dict"""

    def __init__(self):
        self._lock = threading.Lock()
        self._executions: Dict[str, WorkflowExecution] = {}

    def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        with self._lock:
            self._executions[execution.execution_id] = execution.model_copy(deep=True)
        return execution

    def update_execution(self, execution_id: str, updates: Dict[str, Any]) -> WorkflowExecution:
        with self._lock:
            current = self._executions.get(execution_id)
            if current is None:
                raise NotFoundError(
                    f"Execution {execution_id} not found", details={"execution_id": execution_id}
                )
            updated = WorkflowExecution.model_validate({**current.model_dump(), **updates})
            self._executions[execution_id] = updated
            return updated.model_copy(deep=True)

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        with self._lock:
            execution = self._executions.get(execution_id)
            return execution.model_copy(deep=True) if execution else None

    def _newest_first(self, skip: int, limit: int, **match: Any) -> List[WorkflowExecution]:
        with self._lock:
            matches = [
                e for e in self._executions.values()
                if all(getattr(e, key) == value for key, value in match.items())
            ]
        matches.sort(key=lambda e: e.started_at, reverse=True)
        return [e.model_copy(deep=True) for e in matches[skip:skip + limit]]

    def list_for_rule(self, rule_id: str, skip: int = 0, limit: int = 20) -> List[WorkflowExecution]:
        return self._newest_first(skip, limit, workflow_id=rule_id)

    def list_for_ticket(
        self,
        ticket_id: str,
        skip: int = 0,
        limit: int = 20,
        tenant_id: Optional[str] = None
    ) -> List[WorkflowExecution]:
        if tenant_id is None:
            return self._newest_first(skip, limit, ticket_id=ticket_id)
        return self._newest_first(skip, limit, ticket_id=ticket_id, tenant_id=tenant_id)

    def count_executions(self, tenant_id: str, status: Optional[ExecutionStatus] = None) -> int:
        with self._lock:
            return sum(
                1 for e in self._executions.values()
                if e.tenant_id == tenant_id and (status is None or e.status == status)
            )

    def average_duration_ms(self, tenant_id: str) -> float:
        with self._lock:
            durations = [
                e.duration_ms for e in self._executions.values()
                if e.tenant_id == tenant_id and e.duration_ms is not None
            ]
        return sum(durations) / len(durations) if durations else 0.0


# =============================================================================
# Collaborator fakes
# =============================================================================

class StaticTeamResolver(TeamResolver):
    """Resolve teams from a fixed team -> user mapping"""

    def __init__(self, assignments: Optional[Dict[str, Optional[str]]] = None):
        self.assignments = dict(assignments or {})
        self.calls: List[str] = []

    def resolve_assignee(self, team_id: str) -> Optional[str]:
        self.calls.append(team_id)
        return self.assignments.get(team_id)


class RecordingNotificationDispatcher(NotificationDispatcher):
    """Keep every dispatched notification; optionally report failure"""

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.sent: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def send(self, channel: str, recipients: List[str], payload: Dict[str, Any]) -> DispatchResult:
        with self._lock:
            self.sent.append({"channel": channel, "recipients": list(recipients), "payload": dict(payload)})
            count = len(self.sent)
        if self.fail_with:
            return DispatchResult(success=False, error=self.fail_with)
        return DispatchResult(success=True, message_id=f"msg-{count}")


class RecordingEventBus(LocalEventBus):
    """Local event bus that also keeps every emitted event"""

    def __init__(self):
        super().__init__()
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        self.events.append((normalize_event(event_name), dict(payload)))
        super().emit(event_name, payload)

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, event_name: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event_name]
