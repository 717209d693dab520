"""Tests for RuleService"""
from datetime import timedelta

import pytest

from automation.domain.enums import ExecutionStatus, RunStatus, ScheduleState
from automation.domain.errors import (
    AccessDeniedError, AlreadyExistsError, EngineError, InvalidActionError, InvalidConditionError,
    RuleNotFoundError, SchedulingError, ValidationError
)
from automation.domain.models import WorkflowExecution
from automation.domain.requests import CreateWorkflowRuleRequest
from automation.services.rule_service import RuleService
from automation.utils.time import utc_now

from tests.conftest import NOW, OTHER_TENANT_ID, TENANT_ID, USER_ID


TAG_ACTION = {"type": "add_tag", "parameters": {"tag": "auto"}}


@pytest.fixture
def service(container):
    return container.rule_service


@pytest.fixture
def workflow_payload():
    return {
        "name": "VIP triage",
        "priority": 5,
        "conditions": [{"field": "tags", "operator": "contains", "value": "vip"}],
        "actions": [{"type": "set_priority", "parameters": {"priority": "urgent"}}],
        "triggers": ["Ticket.Created", "ticket.created ", "ticket.*"],
    }


def _execution(execution_id, tenant_id, started_minutes=0, status=ExecutionStatus.COMPLETED, duration_ms=None):
    return WorkflowExecution(
        execution_id=execution_id,
        workflow_id="WFR-1",
        ticket_id="TKT-0001",
        tenant_id=tenant_id,
        status=status,
        started_at=NOW + timedelta(minutes=started_minutes),
        duration_ms=duration_ms,
    )


class TestCreateWorkflowRule:
    """Creation, validation and audit events"""

    def test_create_from_dict(self, service, workflow_payload, event_bus) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        assert rule.rule_id.startswith("WFR-")
        assert rule.tenant_id == TENANT_ID
        assert rule.created_by == USER_ID
        assert rule.triggers == ["ticket.created", "ticket.*"]
        assert rule.execution_count == 0
        assert event_bus.payloads("workflow.rule.created") == [{
            "tenant_id": TENANT_ID,
            "workflow_id": rule.rule_id,
            "user_id": USER_ID,
            "type": "custom",
        }]

    def test_create_from_request_model(self, service, workflow_payload) -> None:
        rule = service.create_workflow_rule(
            TENANT_ID, USER_ID, CreateWorkflowRuleRequest(**workflow_payload)
        )
        assert service.get_workflow_rule(rule.rule_id, TENANT_ID).name == "VIP triage"

    def test_requires_an_action(self, service, workflow_payload) -> None:
        workflow_payload["actions"] = []
        with pytest.raises(InvalidActionError):
            service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

    def test_unsupported_operator(self, service, workflow_payload) -> None:
        workflow_payload["conditions"] = [{"field": "priority", "operator": "regex", "value": ".*"}]
        with pytest.raises(InvalidConditionError):
            service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

    def test_unknown_payload_field(self, service, workflow_payload) -> None:
        workflow_payload["owner"] = "someone"
        with pytest.raises(ValidationError):
            service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

    def test_string_number_is_not_coerced(self, service, workflow_payload) -> None:
        workflow_payload["conditions"] = [{"field": "custom_fields.total", "operator": "greater_than", "value": "10"}]
        with pytest.raises(InvalidConditionError):
            service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

    def test_scheduled_rule_gets_next_run(self, service, workflow_payload) -> None:
        workflow_payload["schedule"] = {"frequency": "daily", "time": "06:00"}

        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        assert rule.schedule.state == ScheduleState.SCHEDULED
        assert rule.schedule.timezone == "UTC"
        assert utc_now() < rule.schedule.next_run <= utc_now() + timedelta(days=1)
        assert rule.schedule.next_run.minute == 0

    def test_invalid_schedule(self, service, workflow_payload) -> None:
        workflow_payload["schedule"] = {"frequency": "weekly", "time": "06:00"}
        with pytest.raises(SchedulingError):
            service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

    def test_duplicate_name_rejected(self, service, workflow_payload, rule_store) -> None:
        first = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        with pytest.raises(AlreadyExistsError) as exc_info:
            service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        assert exc_info.value.details["rule_id"] == first.rule_id
        assert rule_store.count_workflow_rules(TENANT_ID) == 1

    def test_same_name_in_other_tenant(self, service, workflow_payload) -> None:
        service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)
        theirs = service.create_workflow_rule(OTHER_TENANT_ID, USER_ID, workflow_payload)

        assert theirs.name == workflow_payload["name"]


class TestReadWorkflowRules:
    """Tenant scoping and listing"""

    def test_other_tenant_denied(self, service, workflow_payload) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)
        with pytest.raises(AccessDeniedError):
            service.get_workflow_rule(rule.rule_id, OTHER_TENANT_ID)

    def test_missing_rule(self, service) -> None:
        with pytest.raises(RuleNotFoundError):
            service.get_workflow_rule("WFR-missing", TENANT_ID)

    def test_list_with_filters_and_paging(self, service, workflow_payload) -> None:
        for i in range(5):
            service.create_workflow_rule(TENANT_ID, USER_ID, {
                **workflow_payload, "name": f"Rule {i}", "priority": i, "is_active": i % 2 == 0
            })
        service.create_workflow_rule(OTHER_TENANT_ID, USER_ID, workflow_payload)

        page = service.list_workflow_rules(TENANT_ID, {"limit": 2, "offset": 1})
        assert page.total_count == 5
        assert [r.name for r in page.rules] == ["Rule 3", "Rule 2"]

        active = service.list_workflow_rules(TENANT_ID, {"is_active": True})
        assert active.total_count == 3

        found = service.list_workflow_rules(TENANT_ID, {"search": "rule 4"})
        assert [r.name for r in found.rules] == ["Rule 4"]

    def test_invalid_filters(self, service) -> None:
        with pytest.raises(ValidationError):
            service.list_workflow_rules(TENANT_ID, {"limit": 0})


class TestUpdateWorkflowRule:
    """Partial updates"""

    def test_partial_update(self, service, workflow_payload, event_bus) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        updated = service.update_workflow_rule(rule.rule_id, TENANT_ID, USER_ID, {
            "priority": 42, "triggers": ["TICKET.UPDATED"]
        })

        assert updated.priority == 42
        assert updated.triggers == ["ticket.updated"]
        assert updated.name == rule.name
        payload = event_bus.payloads("workflow.rule.updated")[0]
        assert payload["changes"] == {"priority": 42, "triggers": ["TICKET.UPDATED"]}

    def test_empty_update_is_noop(self, service, workflow_payload, event_bus) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        assert service.update_workflow_rule(rule.rule_id, TENANT_ID, USER_ID, {}).updated_at == rule.updated_at
        assert event_bus.payloads("workflow.rule.updated") == []

    def test_schedule_edit_keeps_history(self, service, workflow_payload, rule_store) -> None:
        workflow_payload["schedule"] = {"frequency": "daily", "time": "06:00", "timezone": "Europe/Paris"}
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)
        rule_store.update_schedule(rule.rule_id, rule.schedule.model_copy(update={
            "run_count": 3, "last_status": RunStatus.ERROR, "last_error": "boom"
        }))

        updated = service.update_workflow_rule(rule.rule_id, TENANT_ID, USER_ID, {
            "schedule": {"frequency": "monthly", "day_of_month": 15, "time": "07:30"}
        })

        assert updated.schedule.frequency == "monthly"
        assert updated.schedule.timezone == "Europe/Paris"
        assert updated.schedule.run_count == 3
        assert updated.schedule.last_error == "boom"
        assert updated.schedule.next_run > utc_now()

    def test_remove_schedule(self, service, workflow_payload) -> None:
        workflow_payload["schedule"] = {"frequency": "daily", "time": "06:00"}
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        assert service.update_workflow_rule(rule.rule_id, TENANT_ID, USER_ID, {"schedule": None}).schedule is None

    def test_update_other_tenant_denied(self, service, workflow_payload, rule_store) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        with pytest.raises(AccessDeniedError):
            service.update_workflow_rule(rule.rule_id, OTHER_TENANT_ID, USER_ID, {"name": "Hijacked"})
        assert rule_store.get_workflow_rule(rule.rule_id).name == "VIP triage"

    def test_rename_onto_existing_name_rejected(self, service, workflow_payload) -> None:
        service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)
        other = service.create_workflow_rule(TENANT_ID, USER_ID, {**workflow_payload, "name": "Other"})

        with pytest.raises(AlreadyExistsError):
            service.update_workflow_rule(other.rule_id, TENANT_ID, USER_ID, {"name": "VIP triage"})

        kept = service.update_workflow_rule(other.rule_id, TENANT_ID, USER_ID, {"name": "Other", "priority": 1})
        assert kept.name == "Other"

    def test_delete(self, service, workflow_payload, event_bus) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)

        assert service.delete_workflow_rule(rule.rule_id, TENANT_ID, USER_ID) is True
        assert event_bus.payloads("workflow.rule.deleted")[0]["rule_name"] == "VIP triage"
        with pytest.raises(RuleNotFoundError):
            service.get_workflow_rule(rule.rule_id, TENANT_ID)


class TestExecutionHistory:
    """Executions recorded by the engine are readable through the service"""

    def test_rule_and_ticket_executions(self, service, container, make_ticket) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, {
            "name": "Tagger", "actions": [TAG_ACTION], "triggers": ["ticket.created"]
        })
        first = make_ticket()
        second = make_ticket()
        container.workflow_engine.execute_for_ticket(first.ticket_id, "ticket.created")
        container.workflow_engine.execute_for_ticket(second.ticket_id, "ticket.created")

        executions = service.get_rule_executions(rule.rule_id, TENANT_ID)
        assert {e.ticket_id for e in executions} == {first.ticket_id, second.ticket_id}
        assert len(service.get_rule_executions(rule.rule_id, TENANT_ID, limit=1)) == 1

        assert [e.workflow_id for e in service.get_ticket_executions(first.ticket_id, TENANT_ID)] == [rule.rule_id]
        assert service.get_ticket_executions(first.ticket_id, OTHER_TENANT_ID) == []

    def test_executions_of_foreign_rule_denied(self, service, workflow_payload) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, workflow_payload)
        with pytest.raises(AccessDeniedError):
            service.get_rule_executions(rule.rule_id, OTHER_TENANT_ID)

    def test_ticket_page_filled_from_own_tenant(self, service, execution_store) -> None:
        for i in range(3):
            execution_store.create_execution(_execution(f"EXE-own-{i}", TENANT_ID, started_minutes=i))
        for i in range(3):
            execution_store.create_execution(_execution(f"EXE-foreign-{i}", OTHER_TENANT_ID, started_minutes=10 + i))

        page = service.get_ticket_executions("TKT-0001", TENANT_ID, limit=2)

        assert [e.execution_id for e in page] == ["EXE-own-2", "EXE-own-1"]
        assert [e.execution_id for e in service.get_ticket_executions("TKT-0001", TENANT_ID, limit=2, offset=2)] == [
            "EXE-own-0"
        ]


class TestManualExecution:
    """execute_rule through the service"""

    def test_runs_rule_on_ticket(self, service, make_ticket, ticket_store) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, {
            "name": "Tagger", "actions": [TAG_ACTION], "triggers": ["ticket.created"]
        })
        ticket = make_ticket()

        execution = service.execute_rule(rule.rule_id, TENANT_ID, ticket.ticket_id, USER_ID)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.triggered_by == USER_ID
        assert ticket_store.fetch_by_id(ticket.ticket_id).tags == ["auto"]
        assert service.get_workflow_rule(rule.rule_id, TENANT_ID).execution_count == 1

    def test_inactive_rule_rejected(self, service, make_ticket) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, {
            "name": "Off", "actions": [TAG_ACTION], "is_active": False
        })
        with pytest.raises(ValidationError):
            service.execute_rule(rule.rule_id, TENANT_ID, make_ticket().ticket_id, USER_ID)

    def test_foreign_rule_denied(self, service, make_ticket, execution_store) -> None:
        rule = service.create_workflow_rule(TENANT_ID, USER_ID, {"name": "Tagger", "actions": [TAG_ACTION]})
        ticket = make_ticket(tenant_id=OTHER_TENANT_ID)

        with pytest.raises(AccessDeniedError):
            service.execute_rule(rule.rule_id, OTHER_TENANT_ID, ticket.ticket_id, USER_ID)
        assert execution_store.list_for_ticket(ticket.ticket_id) == []

    def test_engine_required(self, rule_store, container, make_ticket) -> None:
        bare = RuleService(rule_store, container.recorder)
        rule = bare.create_workflow_rule(TENANT_ID, USER_ID, {"name": "Tagger", "actions": [TAG_ACTION]})

        with pytest.raises(EngineError):
            bare.execute_rule(rule.rule_id, TENANT_ID, make_ticket().ticket_id, USER_ID)


class TestStatistics:
    """get_workflow_statistics"""

    def test_counts_and_average(self, service, execution_store) -> None:
        service.create_workflow_rule(TENANT_ID, USER_ID, {"name": "On", "actions": [TAG_ACTION]})
        service.create_workflow_rule(TENANT_ID, USER_ID, {"name": "Off", "actions": [TAG_ACTION], "is_active": False})
        service.create_workflow_rule(OTHER_TENANT_ID, USER_ID, {"name": "Theirs", "actions": [TAG_ACTION]})
        execution_store.create_execution(_execution("EXE-1", TENANT_ID, duration_ms=100))
        execution_store.create_execution(_execution("EXE-2", TENANT_ID, status=ExecutionStatus.FAILED, duration_ms=300))
        execution_store.create_execution(_execution("EXE-3", TENANT_ID, status=ExecutionStatus.RUNNING))
        execution_store.create_execution(_execution("EXE-4", OTHER_TENANT_ID, duration_ms=9000))

        stats = service.get_workflow_statistics(TENANT_ID)

        assert stats.total_workflows == 2
        assert stats.active_workflows == 1
        assert stats.total_executions == 3
        assert stats.successful_executions == 1
        assert stats.failed_executions == 1
        assert stats.average_duration_ms == 200.0

    def test_empty_tenant(self, service) -> None:
        stats = service.get_workflow_statistics(TENANT_ID)

        assert stats.total_workflows == 0
        assert stats.total_executions == 0
        assert stats.average_duration_ms == 0.0


class TestRoutingRules:
    """Routing rule CRUD"""

    def test_crud_cycle(self, service, event_bus) -> None:
        rule = service.create_routing_rule(TENANT_ID, USER_ID, {
            "name": "Billing queue",
            "priority": 3,
            "conditions": [{"field": "custom_fields.queue", "operator": "equals", "value": "billing"}],
            "actions": [{"type": "assign_to_team", "parameters": {"team_id": "tier2"}}],
        })
        assert rule.rule_id.startswith("RTR-")
        assert rule.match_count == 0

        updated = service.update_routing_rule(rule.rule_id, TENANT_ID, USER_ID, {"is_active": False})
        assert updated.is_active is False
        assert service.list_routing_rules(TENANT_ID, {"is_active": True}).total_count == 0

        assert service.delete_routing_rule(rule.rule_id, TENANT_ID, USER_ID) is True
        assert event_bus.names() == ["routing.rule.created", "routing.rule.updated", "routing.rule.deleted"]
        assert event_bus.payloads("routing.rule.deleted")[0]["rule_name"] == "Billing queue"

    def test_routing_rule_requires_action(self, service) -> None:
        with pytest.raises(InvalidActionError):
            service.create_routing_rule(TENANT_ID, USER_ID, {"name": "Empty"})

    def test_routing_rule_other_tenant(self, service) -> None:
        rule = service.create_routing_rule(TENANT_ID, USER_ID, {"name": "R", "actions": [TAG_ACTION]})
        with pytest.raises(AccessDeniedError):
            service.delete_routing_rule(rule.rule_id, OTHER_TENANT_ID, USER_ID)
