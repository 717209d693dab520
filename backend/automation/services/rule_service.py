"""Rule Service - Workflow and routing rule management"""
from typing import Any, Dict, List, Optional, Union

from ..config.settings import settings
from ..domain.models import RoutingRule, RuleSchedule, WorkflowExecution, WorkflowRule
from ..domain.enums import AutomationEvent, ExecutionStatus, ScheduleState
from ..domain.errors import AccessDeniedError, AlreadyExistsError, EngineError, RuleNotFoundError
from ..domain.interfaces import EventBus, RuleStore
from ..domain.requests import (
    CreateRoutingRuleRequest, CreateWorkflowRuleRequest, RoutingRuleFilters, RoutingRuleList,
    ScheduleRequest, UpdateRoutingRuleRequest, UpdateWorkflowRuleRequest, WorkflowRuleFilters,
    WorkflowRuleList, WorkflowStatistics, parse_request
)
from ..domain.triggers import normalize_event
from ..engine.execution_recorder import ExecutionRecorder
from ..engine.recurrence import next_run
from ..engine.rule_validator import RuleValidator
from ..engine.workflow_engine import WorkflowEngine
from ..utils.idgen import generate_routing_rule_id, generate_workflow_rule_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class RuleService:
    """
    Service for workflow and routing rule operations

    Every read and write is scoped to a tenant; touching another tenant's
    rule raises AccessDeniedError before any of the rule is used. Payloads
    may be request models or plain dicts.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        recorder: ExecutionRecorder,
        event_bus: Optional[EventBus] = None,
        validator: Optional[RuleValidator] = None,
        workflow_engine: Optional[WorkflowEngine] = None
    ):
        self.repo = rule_store
        self.recorder = recorder
        self.event_bus = event_bus
        self.validator = validator or RuleValidator()
        self.workflow_engine = workflow_engine

    # =========================================================================
    # Workflow Rules
    # =========================================================================

    def create_workflow_rule(
        self,
        tenant_id: str,
        user_id: str,
        data: Union[CreateWorkflowRuleRequest, Dict[str, Any]]
    ) -> WorkflowRule:
        """
        Create a workflow rule

        Raises:
            ValidationError: Malformed payload
            InvalidConditionError / InvalidActionError: Unsupported operator or action
            SchedulingError: Invalid schedule
            AlreadyExistsError: Another rule of the tenant has the same name
        """
        request = parse_request(CreateWorkflowRuleRequest, data)
        self._check_unique_name(tenant_id, request.name)
        self.validator.validate_conditions(request.conditions)
        self.validator.validate_actions(request.actions, require_one=True)
        self.validator.validate_triggers(request.triggers)

        now = utc_now()
        rule = WorkflowRule(
            rule_id=generate_workflow_rule_id(),
            tenant_id=tenant_id,
            name=request.name,
            description=request.description,
            type=request.type,
            priority=request.priority,
            is_active=request.is_active,
            conditions=request.conditions,
            actions=request.actions,
            triggers=self._normalize_triggers(request.triggers),
            schedule=self._build_schedule(request.schedule) if request.schedule else None,
            metadata=request.metadata,
            created_by=user_id,
            created_at=now,
            updated_at=now
        )

        created = self.repo.create_workflow_rule(rule)
        self._emit(AutomationEvent.WORKFLOW_RULE_CREATED, {
            "tenant_id": tenant_id,
            "workflow_id": created.rule_id,
            "user_id": user_id,
            "type": created.type.value,
        })
        return created

    def get_workflow_rule(self, rule_id: str, tenant_id: str) -> WorkflowRule:
        """Get a workflow rule of the tenant"""
        rule = self.repo.get_workflow_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Workflow rule {rule_id} not found", details={"rule_id": rule_id})
        self._check_tenant(rule.tenant_id, tenant_id, rule_id)
        return rule

    def list_workflow_rules(
        self,
        tenant_id: str,
        filters: Optional[Union[WorkflowRuleFilters, Dict[str, Any]]] = None
    ) -> WorkflowRuleList:
        """List a page of rules (priority desc, newest first) with the unpaged total"""
        f = parse_request(WorkflowRuleFilters, filters or {})
        rules = self.repo.list_workflow_rules(
            tenant_id,
            rule_type=f.type,
            is_active=f.is_active,
            search=f.search,
            skip=f.offset,
            limit=f.limit
        )
        total = self.repo.count_workflow_rules(
            tenant_id, rule_type=f.type, is_active=f.is_active, search=f.search
        )
        return WorkflowRuleList(rules=rules, total_count=total)

    def update_workflow_rule(
        self,
        rule_id: str,
        tenant_id: str,
        user_id: str,
        data: Union[UpdateWorkflowRuleRequest, Dict[str, Any]]
    ) -> WorkflowRule:
        """Apply a partial update; timing edits recompute the schedule's next run"""
        current = self.get_workflow_rule(rule_id, tenant_id)
        request = parse_request(UpdateWorkflowRuleRequest, data)
        changes = request.model_dump(exclude_unset=True)

        if request.name is not None and request.name != current.name:
            self._check_unique_name(tenant_id, request.name, ignore_rule_id=rule_id)

        if request.conditions is not None:
            self.validator.validate_conditions(request.conditions)
        if request.actions is not None:
            self.validator.validate_actions(request.actions, require_one=True)
        if request.triggers is not None:
            self.validator.validate_triggers(request.triggers)

        updates: Dict[str, Any] = {}
        for key in changes:
            if key == "schedule":
                updates["schedule"] = (
                    self._build_schedule(request.schedule, current.schedule)
                    if request.schedule else None
                )
            elif key == "triggers":
                updates["triggers"] = self._normalize_triggers(request.triggers or [])
            else:
                updates[key] = getattr(request, key)

        if not updates:
            return current

        updates["updated_at"] = utc_now()
        updated = self.repo.update_workflow_rule(rule_id, updates)

        logger.info(
            f"Updated workflow rule {rule_id}: {sorted(changes)}",
            extra={"rule_id": rule_id, "tenant_id": tenant_id, "actor_id": user_id}
        )
        self._emit(AutomationEvent.WORKFLOW_RULE_UPDATED, {
            "tenant_id": tenant_id,
            "workflow_id": rule_id,
            "user_id": user_id,
            "changes": request.model_dump(mode="json", exclude_unset=True),
        })
        return updated

    def delete_workflow_rule(self, rule_id: str, tenant_id: str, user_id: str) -> bool:
        rule = self.get_workflow_rule(rule_id, tenant_id)
        deleted = self.repo.delete_workflow_rule(rule_id)

        logger.info(
            f"Deleted workflow rule {rule_id}",
            extra={"rule_id": rule_id, "tenant_id": tenant_id, "actor_id": user_id}
        )
        self._emit(AutomationEvent.WORKFLOW_RULE_DELETED, {
            "tenant_id": tenant_id,
            "workflow_id": rule_id,
            "user_id": user_id,
            "rule_name": rule.name,
        })
        return deleted

    def get_rule_executions(
        self,
        rule_id: str,
        tenant_id: str,
        limit: int = 20,
        offset: int = 0
    ) -> List[WorkflowExecution]:
        """Execution history of a workflow rule, newest first"""
        self.get_workflow_rule(rule_id, tenant_id)
        return self.recorder.list_for_rule(rule_id, limit=limit, skip=offset)

    def get_ticket_executions(
        self,
        ticket_id: str,
        tenant_id: str,
        limit: int = 20,
        offset: int = 0
    ) -> List[WorkflowExecution]:
        """Executions on a ticket within the tenant, newest first"""
        return self.recorder.list_for_ticket(ticket_id, limit=limit, skip=offset, tenant_id=tenant_id)

    def execute_rule(
        self,
        rule_id: str,
        tenant_id: str,
        ticket_id: str,
        actor_id: str
    ) -> Optional[WorkflowExecution]:
        """
        Run a workflow rule by hand against one ticket

        Returns:
            The execution, or None when the rule's conditions do not match

        Raises:
            RuleNotFoundError / AccessDeniedError: Unknown or foreign rule
            ValidationError: Inactive rule
            TicketNotFoundError: Unknown ticket
        """
        if self.workflow_engine is None:
            raise EngineError("Manual execution needs a workflow engine")
        self.get_workflow_rule(rule_id, tenant_id)

        logger.info(
            f"Manual run of workflow rule {rule_id} on ticket {ticket_id}",
            extra={"rule_id": rule_id, "ticket_id": ticket_id, "tenant_id": tenant_id, "actor_id": actor_id}
        )
        return self.workflow_engine.execute_rule(rule_id, ticket_id, actor_id)

    def get_workflow_statistics(self, tenant_id: str) -> WorkflowStatistics:
        """Rule counts and execution outcomes of a tenant"""
        return WorkflowStatistics(
            total_workflows=self.repo.count_workflow_rules(tenant_id),
            active_workflows=self.repo.count_workflow_rules(tenant_id, is_active=True),
            total_executions=self.recorder.count(tenant_id),
            successful_executions=self.recorder.count(tenant_id, ExecutionStatus.COMPLETED),
            failed_executions=self.recorder.count(tenant_id, ExecutionStatus.FAILED),
            average_duration_ms=self.recorder.average_duration_ms(tenant_id)
        )

    # =========================================================================
    # Routing Rules
    # =========================================================================

    def create_routing_rule(
        self,
        tenant_id: str,
        user_id: str,
        data: Union[CreateRoutingRuleRequest, Dict[str, Any]]
    ) -> RoutingRule:
        """Create a routing rule"""
        request = parse_request(CreateRoutingRuleRequest, data)
        self.validator.validate_conditions(request.conditions)
        self.validator.validate_actions(request.actions, require_one=True)

        now = utc_now()
        rule = RoutingRule(
            rule_id=generate_routing_rule_id(),
            tenant_id=tenant_id,
            name=request.name,
            description=request.description,
            priority=request.priority,
            is_active=request.is_active,
            conditions=request.conditions,
            actions=request.actions,
            created_by=user_id,
            created_at=now,
            updated_at=now
        )

        created = self.repo.create_routing_rule(rule)
        self._emit(AutomationEvent.ROUTING_RULE_CREATED, {
            "tenant_id": tenant_id,
            "rule_id": created.rule_id,
            "user_id": user_id,
        })
        return created

    def get_routing_rule(self, rule_id: str, tenant_id: str) -> RoutingRule:
        rule = self.repo.get_routing_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Routing rule {rule_id} not found", details={"rule_id": rule_id})
        self._check_tenant(rule.tenant_id, tenant_id, rule_id)
        return rule

    def list_routing_rules(
        self,
        tenant_id: str,
        filters: Optional[Union[RoutingRuleFilters, Dict[str, Any]]] = None
    ) -> RoutingRuleList:
        f = parse_request(RoutingRuleFilters, filters or {})
        rules = self.repo.list_routing_rules(
            tenant_id, is_active=f.is_active, search=f.search, skip=f.offset, limit=f.limit
        )
        total = self.repo.count_routing_rules(tenant_id, is_active=f.is_active, search=f.search)
        return RoutingRuleList(rules=rules, total_count=total)

    def update_routing_rule(
        self,
        rule_id: str,
        tenant_id: str,
        user_id: str,
        data: Union[UpdateRoutingRuleRequest, Dict[str, Any]]
    ) -> RoutingRule:
        current = self.get_routing_rule(rule_id, tenant_id)
        request = parse_request(UpdateRoutingRuleRequest, data)
        changes = request.model_dump(exclude_unset=True)

        if request.conditions is not None:
            self.validator.validate_conditions(request.conditions)
        if request.actions is not None:
            self.validator.validate_actions(request.actions, require_one=True)

        updates = {key: getattr(request, key) for key in changes}
        if not updates:
            return current

        updates["updated_at"] = utc_now()
        updated = self.repo.update_routing_rule(rule_id, updates)

        self._emit(AutomationEvent.ROUTING_RULE_UPDATED, {
            "tenant_id": tenant_id,
            "rule_id": rule_id,
            "user_id": user_id,
            "changes": request.model_dump(mode="json", exclude_unset=True),
        })
        return updated

    def delete_routing_rule(self, rule_id: str, tenant_id: str, user_id: str) -> bool:
        rule = self.get_routing_rule(rule_id, tenant_id)
        deleted = self.repo.delete_routing_rule(rule_id)
        self._emit(AutomationEvent.ROUTING_RULE_DELETED, {
            "tenant_id": tenant_id,
            "rule_id": rule_id,
            "user_id": user_id,
            "rule_name": rule.name,
        })
        return deleted

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check_tenant(owner_tenant_id: str, tenant_id: str, rule_id: str) -> None:
        if owner_tenant_id != tenant_id:
            raise AccessDeniedError(
                "Rule belongs to another tenant", details={"rule_id": rule_id}
            )

    def _check_unique_name(self, tenant_id: str, name: str, ignore_rule_id: Optional[str] = None) -> None:
        existing = self.repo.find_workflow_rule_by_name(tenant_id, name)
        if existing is not None and existing.rule_id != ignore_rule_id:
            raise AlreadyExistsError(
                f"Workflow rule with name '{name}' already exists",
                details={"name": name, "rule_id": existing.rule_id}
            )

    @staticmethod
    def _normalize_triggers(triggers: List[str]) -> List[str]:
        normalized: List[str] = []
        for trigger in triggers:
            event = normalize_event(trigger)
            if event not in normalized:
                normalized.append(event)
        return normalized

    def _build_schedule(
        self,
        request: ScheduleRequest,
        existing: Optional[RuleSchedule] = None
    ) -> RuleSchedule:
        """Validate recurrence fields and compute the first run; run history is kept"""
        timezone = request.timezone or (existing.timezone if existing else settings.default_timezone)
        frequency = self.validator.validate_schedule(
            frequency=request.frequency,
            time=request.time,
            timezone=timezone,
            day_of_week=request.day_of_week,
            day_of_month=request.day_of_month
        )

        schedule = RuleSchedule(
            frequency=frequency.value,
            day_of_week=request.day_of_week,
            day_of_month=request.day_of_month,
            time=request.time,
            timezone=timezone,
            is_active=request.is_active,
            state=ScheduleState.SCHEDULED,
            next_run=next_run(
                frequency.value, request.day_of_week, request.day_of_month,
                request.time, timezone
            )
        )
        if existing is not None:
            schedule = schedule.model_copy(update={
                "state": existing.state,
                "last_run": existing.last_run,
                "last_status": existing.last_status,
                "last_error": existing.last_error,
                "run_count": existing.run_count,
                "claimed_at": existing.claimed_at,
            })
        return schedule

    def _emit(self, event: AutomationEvent, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event.value, payload)
