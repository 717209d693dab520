"""
Pytest Configuration and Fixtures

Shared fixtures built on the in-memory stores so every test runs without
MongoDB or network access.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest

from automation.container import AutomationContainer
from automation.domain.models import Action, Condition, RoutingRule, Ticket, WorkflowRule
from automation.repositories.memory import (
    InMemoryEscalationPathStore,
    InMemoryExecutionStore,
    InMemoryRuleStore,
    InMemoryTicketStore,
    RecordingEventBus,
    RecordingNotificationDispatcher,
    StaticTeamResolver,
)
from automation.utils.idgen import generate_routing_rule_id, generate_workflow_rule_id

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
USER_ID = "user-1"

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ticket_store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def path_store() -> InMemoryEscalationPathStore:
    return InMemoryEscalationPathStore()


@pytest.fixture
def execution_store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def team_resolver() -> StaticTeamResolver:
    return StaticTeamResolver({"tier2": "agent-7", "empty-team": None})


@pytest.fixture
def dispatcher() -> RecordingNotificationDispatcher:
    return RecordingNotificationDispatcher()


@pytest.fixture
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def container(
    ticket_store: InMemoryTicketStore,
    rule_store: InMemoryRuleStore,
    path_store: InMemoryEscalationPathStore,
    execution_store: InMemoryExecutionStore,
    team_resolver: StaticTeamResolver,
    dispatcher: RecordingNotificationDispatcher,
    event_bus: RecordingEventBus,
) -> Generator[AutomationContainer, None, None]:
    """Fully wired core over the in-memory stores"""
    c = AutomationContainer(
        ticket_store=ticket_store,
        rule_store=rule_store,
        path_store=path_store,
        execution_store=execution_store,
        team_resolver=team_resolver,
        notification_dispatcher=dispatcher,
        event_bus=event_bus,
        timeout_seconds=2.0,
    )
    yield c
    c.close()


@pytest.fixture
def make_ticket(ticket_store: InMemoryTicketStore) -> Callable[..., Ticket]:
    """Create and store a ticket; keyword arguments override defaults"""
    counter = {"n": 0}

    def _make(**overrides: Any) -> Ticket:
        counter["n"] += 1
        data: Dict[str, Any] = {
            "ticket_id": f"TKT-{counter['n']:04d}",
            "tenant_id": TENANT_ID,
            "subject": "Printer on fire",
            "priority": "medium",
            "status": "open",
            "created_at": NOW,
            "updated_at": NOW,
        }
        data.update(overrides)
        return ticket_store.add(Ticket(**data))

    return _make


@pytest.fixture
def make_workflow_rule(rule_store: InMemoryRuleStore) -> Callable[..., WorkflowRule]:
    """Store a workflow rule directly, bypassing validation"""

    def _make(
        conditions: Optional[List[Dict[str, Any]]] = None,
        actions: Optional[List[Dict[str, Any]]] = None,
        triggers: Optional[List[str]] = None,
        **overrides: Any
    ) -> WorkflowRule:
        data: Dict[str, Any] = {
            "rule_id": generate_workflow_rule_id(),
            "tenant_id": TENANT_ID,
            "name": "Rule",
            "conditions": [Condition(**c) for c in conditions or []],
            "actions": [Action(**a) for a in actions or []],
            "triggers": triggers if triggers is not None else ["ticket.created"],
        }
        data.update(overrides)
        return rule_store.create_workflow_rule(WorkflowRule(**data))

    return _make


@pytest.fixture
def make_routing_rule(rule_store: InMemoryRuleStore) -> Callable[..., RoutingRule]:
    """Store a routing rule directly, bypassing validation"""

    def _make(
        conditions: Optional[List[Dict[str, Any]]] = None,
        actions: Optional[List[Dict[str, Any]]] = None,
        **overrides: Any
    ) -> RoutingRule:
        data: Dict[str, Any] = {
            "rule_id": generate_routing_rule_id(),
            "tenant_id": TENANT_ID,
            "name": "Route",
            "conditions": [Condition(**c) for c in conditions or []],
            "actions": [Action(**a) for a in actions or []],
        }
        data.update(overrides)
        return rule_store.create_routing_rule(RoutingRule(**data))

    return _make
