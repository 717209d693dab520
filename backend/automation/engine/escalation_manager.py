"""
Escalation Path Manager - Timed escalation of unresolved tickets

An escalation path is an ordered list of steps. Step N becomes due once the
ticket has been unresolved for the sum of the delays of steps 1..N. When a
step fires the ticket is reassigned and notified, and the ticket's
escalation_level records the highest level applied so a step never fires
twice.

Each tenant has at most one default path. The default is used when no other
active path's conditions match the ticket.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..config.settings import settings
from ..domain.models import (
    Action, ActionResult, EscalationOutcome, EscalationPath, EscalationStep, Ticket
)
from ..domain.enums import (
    ActionType, AssignTargetType, AutomationEvent, RESOLVED_TICKET_STATUSES
)
from ..domain.errors import (
    AccessDeniedError, EscalationPathNotFoundError, InvalidEscalationPathError,
    TicketNotFoundError
)
from ..domain.interfaces import EscalationPathStore, EventBus, TicketStore
from ..domain.requests import (
    CreateEscalationPathRequest, EscalationPathList, UpdateEscalationPathRequest,
    parse_request
)
from .action_executor import ActionExecutor
from .condition_evaluator import ConditionEvaluator
from .rule_validator import RuleValidator
from ..utils.idgen import generate_escalation_path_id
from ..utils.time import add_minutes, ensure_utc, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


DEFAULT_NOTIFICATION_TEMPLATE = "ticket_escalated"


class EscalationManager:
    """
    Escalation path CRUD and the escalation tick

    Responsibilities:
    - Create, update and delete paths with tenant checks and audit events
    - Keep a single default path per tenant (enforced by the store)
    - Compute step due times and apply due steps to tickets
    """

    def __init__(
        self,
        path_store: EscalationPathStore,
        ticket_store: TicketStore,
        action_executor: ActionExecutor,
        event_bus: Optional[EventBus] = None,
        validator: Optional[RuleValidator] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None
    ):
        self.path_store = path_store
        self.ticket_store = ticket_store
        self.action_executor = action_executor
        self.event_bus = event_bus
        self.validator = validator or RuleValidator()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_path(
        self,
        tenant_id: str,
        user_id: str,
        data: Union[CreateEscalationPathRequest, Dict[str, Any]]
    ) -> EscalationPath:
        """
        Create an escalation path

        When the request marks the path as default, every other default of
        the tenant is cleared.

        Raises:
            ValidationError: Malformed payload, conditions or steps
        """
        request = parse_request(CreateEscalationPathRequest, data)
        self.validator.validate_conditions(request.conditions)
        self.validator.validate_escalation_steps(request.steps)

        now = utc_now()
        path = EscalationPath(
            path_id=generate_escalation_path_id(),
            tenant_id=tenant_id,
            name=request.name,
            description=request.description,
            steps=request.steps,
            conditions=request.conditions,
            is_active=request.is_active,
            is_default=False,
            metadata=request.metadata,
            created_by=user_id,
            created_at=now,
            updated_at=now
        )

        created = self.path_store.create_path(path)
        if request.is_default:
            try:
                created = self.path_store.set_default(tenant_id, created.path_id)
            except Exception:
                self.path_store.delete_path(created.path_id)
                logger.warning(
                    f"Removed escalation path {created.path_id}: could not make it the default",
                    extra={"path_id": created.path_id, "tenant_id": tenant_id}
                )
                raise

        logger.info(
            f"Created escalation path {created.path_id}",
            extra={"path_id": created.path_id, "tenant_id": tenant_id, "actor_id": user_id}
        )
        self._emit(AutomationEvent.ESCALATION_PATH_CREATED, {
            "tenant_id": tenant_id,
            "path_id": created.path_id,
            "user_id": user_id,
        })
        return created

    def get_path(self, path_id: str, tenant_id: str) -> EscalationPath:
        """
        Raises:
            EscalationPathNotFoundError: Unknown path
            AccessDeniedError: Path belongs to another tenant
        """
        path = self.path_store.get_path(path_id)
        if path is None:
            raise EscalationPathNotFoundError(
                f"Escalation path {path_id} not found", details={"path_id": path_id}
            )
        if path.tenant_id != tenant_id:
            raise AccessDeniedError(
                "Escalation path belongs to another tenant", details={"path_id": path_id}
            )
        return path

    def list_paths(self, tenant_id: str, is_active: Optional[bool] = None) -> EscalationPathList:
        paths = self.path_store.list_paths(tenant_id, is_active=is_active)
        return EscalationPathList(paths=paths, total_count=len(paths))

    def get_default_path(self, tenant_id: str) -> Optional[EscalationPath]:
        return self.path_store.get_default(tenant_id)

    def update_path(
        self,
        path_id: str,
        tenant_id: str,
        user_id: str,
        data: Union[UpdateEscalationPathRequest, Dict[str, Any]]
    ) -> EscalationPath:
        """Apply a partial update; is_default goes through the store's default swap"""
        current = self.get_path(path_id, tenant_id)
        request = parse_request(UpdateEscalationPathRequest, data)
        changes = request.model_dump(exclude_unset=True)

        if request.conditions is not None:
            self.validator.validate_conditions(request.conditions)
        if request.steps is not None:
            self.validator.validate_escalation_steps(request.steps)

        make_default = changes.pop("is_default", None)
        updates: Dict[str, Any] = {}
        for key in changes:
            updates[key] = getattr(request, key)

        updated = current
        if updates:
            updates["updated_at"] = utc_now()
            updated = self.path_store.update_path(path_id, updates)

        if make_default is True and not current.is_default:
            updated = self.path_store.set_default(tenant_id, path_id)
        elif make_default is False and current.is_default:
            updated = self.path_store.clear_default(tenant_id, path_id) or updated

        logger.info(
            f"Updated escalation path {path_id}",
            extra={"path_id": path_id, "tenant_id": tenant_id, "actor_id": user_id}
        )
        self._emit(AutomationEvent.ESCALATION_PATH_UPDATED, {
            "tenant_id": tenant_id,
            "path_id": path_id,
            "user_id": user_id,
            "changes": request.model_dump(mode="json", exclude_unset=True),
        })
        return updated

    def set_default_path(self, path_id: str, tenant_id: str, user_id: str) -> EscalationPath:
        """Make a path the tenant's only default"""
        return self.update_path(path_id, tenant_id, user_id, {"is_default": True})

    def delete_path(self, path_id: str, tenant_id: str, user_id: str) -> bool:
        path = self.get_path(path_id, tenant_id)
        deleted = self.path_store.delete_path(path_id)

        logger.info(
            f"Deleted escalation path {path_id}",
            extra={"path_id": path_id, "tenant_id": tenant_id, "actor_id": user_id}
        )
        self._emit(AutomationEvent.ESCALATION_PATH_DELETED, {
            "tenant_id": tenant_id,
            "path_id": path_id,
            "user_id": user_id,
            "path_name": path.name,
        })
        return deleted

    # =========================================================================
    # Due-time computation
    # =========================================================================

    @staticmethod
    def step_due_at(path: EscalationPath, level: int, unresolved_since: datetime) -> datetime:
        """
        When step ``level`` of a path becomes due

        Args:
            path: Escalation path
            level: Step level
            unresolved_since: Instant the ticket became unresolved

        Returns:
            unresolved_since plus the delays of every step up to ``level``

        Raises:
            InvalidEscalationPathError: If the path has no step at ``level``
        """
        steps = path.ordered_steps()
        if not any(step.level == level for step in steps):
            raise InvalidEscalationPathError(
                f"Path {path.path_id} has no step at level {level}",
                details={"path_id": path.path_id, "level": level}
            )
        total = sum(step.delay_minutes for step in steps if step.level <= level)
        return add_minutes(ensure_utc(unresolved_since), total)

    def select_path(self, ticket: Ticket) -> Optional[EscalationPath]:
        """
        Path that governs a ticket

        The first active non-default path (oldest first) whose conditions
        match wins; otherwise the tenant default, if active and matching.
        """
        snapshot = ticket.snapshot()
        paths = self.path_store.list_paths(ticket.tenant_id, is_active=True)

        default: Optional[EscalationPath] = None
        for path in paths:
            if path.is_default:
                default = path
                continue
            if self.condition_evaluator.evaluate(path.conditions, snapshot):
                return path

        if default is not None and self.condition_evaluator.evaluate(default.conditions, snapshot):
            return default
        return None

    def due_steps(self, ticket: Ticket, path: EscalationPath, now: datetime) -> List[EscalationStep]:
        """Steps above the ticket's escalation level whose due time has passed"""
        if (ticket.status or "").lower() in RESOLVED_TICKET_STATUSES:
            return []

        since = ensure_utc(ticket.unresolved_since or ticket.created_at)
        now = ensure_utc(now)

        due: List[EscalationStep] = []
        elapsed = 0
        for step in path.ordered_steps():
            elapsed += step.delay_minutes
            if step.level <= ticket.escalation_level:
                continue
            if add_minutes(since, elapsed) <= now:
                due.append(step)
        return due

    # =========================================================================
    # Escalation
    # =========================================================================

    def escalate_ticket(self, ticket_id: str, now: Optional[datetime] = None) -> Optional[EscalationOutcome]:
        """
        Apply every due escalation step to a ticket

        Returns:
            EscalationOutcome, or None when no path applies or nothing is due

        Raises:
            TicketNotFoundError: If the ticket does not exist
        """
        ticket = self.ticket_store.fetch_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        return self._escalate(ticket, ensure_utc(now or utc_now()))

    def process_due_escalations(
        self,
        now: Optional[datetime] = None,
        tenant_id: Optional[str] = None
    ) -> Dict[str, int]:
        """
        Escalation tick over unresolved tickets

        Every unresolved ticket is visited, read in pages of
        ``escalation_batch_size``. A failure on one ticket is logged and
        counted; the tick continues.

        Returns:
            Counts of tickets processed, escalated and failed
        """
        now = ensure_utc(now or utc_now())
        tickets = self.ticket_store.iter_unresolved(
            tenant_id=tenant_id, batch_size=settings.escalation_batch_size
        )

        summary = {"processed": 0, "escalated": 0, "errors": 0}
        for ticket in tickets:
            summary["processed"] += 1
            try:
                if self._escalate(ticket, now) is not None:
                    summary["escalated"] += 1
            except Exception as e:
                summary["errors"] += 1
                logger.error(
                    f"Escalation failed for ticket {ticket.ticket_id}: {e}",
                    extra={"ticket_id": ticket.ticket_id, "tenant_id": ticket.tenant_id},
                    exc_info=True
                )

        if summary["escalated"] or summary["errors"]:
            logger.info(
                f"Escalation tick: {summary['escalated']} escalated, "
                f"{summary['errors']} errors, {summary['processed']} checked"
            )
        return summary

    def _escalate(self, ticket: Ticket, now: datetime) -> Optional[EscalationOutcome]:
        path = self.select_path(ticket)
        if path is None:
            return None

        steps = self.due_steps(ticket, path, now)
        if not steps:
            return None

        results: List[ActionResult] = []
        for step in steps:
            step_results = self.action_executor.execute(self._step_actions(step), ticket)
            results.extend(step_results)

            logger.info(
                f"Applied escalation level {step.level} of path {path.path_id} to ticket {ticket.ticket_id}",
                extra={
                    "ticket_id": ticket.ticket_id,
                    "tenant_id": ticket.tenant_id,
                    "path_id": path.path_id,
                    "escalation_level": step.level
                }
            )
            self._emit(AutomationEvent.ESCALATION_STEP_APPLIED, {
                "tenant_id": ticket.tenant_id,
                "ticket_id": ticket.ticket_id,
                "path_id": path.path_id,
                "level": step.level,
                "failed_actions": [r.action_type for r in step_results if not r.success],
            })

        applied = [step.level for step in steps]
        self.ticket_store.apply_patch(ticket.ticket_id, {"escalation_level": max(applied)})

        return EscalationOutcome(
            ticket_id=ticket.ticket_id,
            path_id=path.path_id,
            applied_levels=applied,
            results=results
        )

    @staticmethod
    def _step_actions(step: EscalationStep) -> List[Action]:
        """Express a step as executor actions: assignment first, then notifications"""
        actions: List[Action] = []
        if step.assign_to is not None:
            if step.assign_to.type == AssignTargetType.TEAM:
                actions.append(Action(
                    type=ActionType.ASSIGN_TO_TEAM.value,
                    parameters={"team_id": step.assign_to.id}
                ))
            else:
                actions.append(Action(
                    type=ActionType.ASSIGN_TO_USER.value,
                    parameters={"user_id": step.assign_to.id}
                ))

        for notification in step.notifications:
            actions.append(Action(
                type=ActionType.SEND_NOTIFICATION.value,
                parameters={
                    "channel": notification.channel,
                    "recipients": list(notification.recipients),
                    "template": notification.template or DEFAULT_NOTIFICATION_TEMPLATE,
                }
            ))
        return actions

    def _emit(self, event: AutomationEvent, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event.value, payload)
