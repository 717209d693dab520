"""Container - Wire stores, engines and services together"""
from typing import Optional

from .domain.interfaces import (
    EscalationPathStore, EventBus, ExecutionStore, NotificationDispatcher, RuleStore,
    TeamResolver, TicketStore
)
from .engine.action_executor import ActionExecutor
from .engine.escalation_manager import EscalationManager
from .engine.event_bus import LocalEventBus
from .engine.execution_recorder import ExecutionRecorder
from .engine.routing_engine import RoutingEngine
from .engine.rule_validator import RuleValidator
from .engine.workflow_engine import WorkflowEngine
from .services.rule_service import RuleService
from .services.schedule_service import ScheduleService
from .utils.logger import get_logger

logger = get_logger(__name__)


class AutomationContainer:
    """
    One fully wired automation core

    The workflow engine listens on the event bus for ``ticket.*`` events, and
    the schedule service runs rules through the workflow engine.
    """

    def __init__(
        self,
        ticket_store: TicketStore,
        rule_store: RuleStore,
        path_store: EscalationPathStore,
        execution_store: ExecutionStore,
        team_resolver: Optional[TeamResolver] = None,
        notification_dispatcher: Optional[NotificationDispatcher] = None,
        event_bus: Optional[EventBus] = None,
        timeout_seconds: Optional[float] = None,
        trigger_pattern: str = "ticket.*"
    ):
        self.ticket_store = ticket_store
        self.rule_store = rule_store
        self.path_store = path_store
        self.execution_store = execution_store
        self.event_bus = event_bus or LocalEventBus()

        validator = RuleValidator()
        self.action_executor = ActionExecutor(
            ticket_store,
            team_resolver=team_resolver,
            notification_dispatcher=notification_dispatcher,
            timeout_seconds=timeout_seconds
        )
        self.recorder = ExecutionRecorder(execution_store)

        self.workflow_engine = WorkflowEngine(
            ticket_store, rule_store, self.action_executor, self.recorder, event_bus=self.event_bus
        )
        self.routing_engine = RoutingEngine(
            ticket_store, rule_store, self.action_executor, event_bus=self.event_bus
        )
        self.escalation_manager = EscalationManager(
            path_store, ticket_store, self.action_executor,
            event_bus=self.event_bus, validator=validator
        )
        self.rule_service = RuleService(
            rule_store, self.recorder, event_bus=self.event_bus, validator=validator,
            workflow_engine=self.workflow_engine
        )
        self.schedule_service = ScheduleService(
            rule_store, job=lambda rule: self.workflow_engine.execute_scheduled_rule(rule.rule_id)
        )

        if trigger_pattern:
            self.workflow_engine.subscribe(self.event_bus, trigger_pattern)

    def close(self) -> None:
        self.action_executor.close()


def build_mongo_container(event_bus: Optional[EventBus] = None) -> AutomationContainer:
    """Container backed by MongoDB repositories and the webhook dispatcher"""
    from .repositories.mongo_client import create_indexes
    from .repositories.ticket_repo import TicketRepository
    from .repositories.rule_repo import RuleRepository
    from .repositories.escalation_repo import EscalationPathRepository
    from .repositories.execution_repo import ExecutionRepository
    from .repositories.team_repo import TeamRepository
    from .services.notification_service import WebhookNotificationDispatcher

    create_indexes()
    logger.info("Building MongoDB automation container")
    return AutomationContainer(
        ticket_store=TicketRepository(),
        rule_store=RuleRepository(),
        path_store=EscalationPathRepository(),
        execution_store=ExecutionRepository(),
        team_resolver=TeamRepository(),
        notification_dispatcher=WebhookNotificationDispatcher(),
        event_bus=event_bus
    )
