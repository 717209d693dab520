"""Tests for ScheduleService"""
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from automation.domain.enums import RunStatus, ScheduleState
from automation.domain.errors import SchedulingError
from automation.domain.models import RuleSchedule
from automation.services.schedule_service import ScheduleService

from tests.conftest import NOW


NEXT_MORNING = datetime(2024, 3, 16, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(container):
    return container.schedule_service


@pytest.fixture
def make_scheduled_rule(make_workflow_rule):
    """Daily 09:00 UTC rule that came due a minute before NOW"""
    def _make(actions=None, **schedule_overrides):
        schedule = {
            "frequency": "daily",
            "time": "09:00",
            "timezone": "UTC",
            "next_run": NOW - timedelta(minutes=1),
        }
        schedule.update(schedule_overrides)
        return make_workflow_rule(
            triggers=[],
            actions=actions if actions is not None else [{"type": "add_tag", "parameters": {"tag": "nightly"}}],
            schedule=RuleSchedule(**schedule),
        )
    return _make


class TestDue:
    """Which rules are due"""

    def test_due_rules(self, service, make_scheduled_rule) -> None:
        due = make_scheduled_rule()
        make_scheduled_rule(next_run=NOW + timedelta(minutes=1))
        make_scheduled_rule(is_active=False)
        make_scheduled_rule(state=ScheduleState.RUNNING, claimed_at=NOW - timedelta(minutes=1))

        assert [r.rule_id for r in service.get_due(NOW)] == [due.rule_id]

    def test_inactive_rule_not_due(self, service, make_workflow_rule) -> None:
        make_workflow_rule(
            is_active=False,
            schedule=RuleSchedule(frequency="daily", time="09:00", next_run=NOW - timedelta(hours=1)),
        )
        assert service.get_due(NOW) == []

    def test_fresh_claim_not_due(self, service, make_scheduled_rule) -> None:
        make_scheduled_rule(state=ScheduleState.RUNNING, claimed_at=NOW - timedelta(minutes=5))
        assert service.get_due(NOW) == []

    def test_stale_claim_due_again(self, service, make_scheduled_rule) -> None:
        stuck = make_scheduled_rule(state=ScheduleState.RUNNING, claimed_at=NOW - timedelta(hours=1))
        assert [r.rule_id for r in service.get_due(NOW)] == [stuck.rule_id]

    def test_lease_is_configurable(self, rule_store, make_scheduled_rule) -> None:
        stuck = make_scheduled_rule(state=ScheduleState.RUNNING, claimed_at=NOW - timedelta(minutes=5))
        service = ScheduleService(rule_store, lease_seconds=60)
        assert [r.rule_id for r in service.get_due(NOW)] == [stuck.rule_id]


class TestRun:
    """SCHEDULED -> RUNNING -> COMPLETED|FAILED -> SCHEDULED"""

    def test_successful_run(self, service, make_scheduled_rule, make_ticket, ticket_store, rule_store) -> None:
        ticket = make_ticket()
        rule = make_scheduled_rule()

        schedule = service.run(rule, now=NOW)

        assert schedule.state == ScheduleState.SCHEDULED
        assert schedule.last_status == RunStatus.SUCCESS
        assert schedule.last_error is None
        assert schedule.last_run == NOW
        assert schedule.run_count == 1
        assert schedule.next_run == NEXT_MORNING
        assert rule_store.get_workflow_rule(rule.rule_id).schedule == schedule
        assert ticket_store.fetch_by_id(ticket.ticket_id).tags == ["nightly"]

    def test_states_seen_by_job(self, service, make_scheduled_rule, rule_store) -> None:
        rule = make_scheduled_rule()
        seen = []

        def job(claimed):
            seen.append(claimed.schedule.state)
            seen.append(rule_store.get_workflow_rule(rule.rule_id).schedule.state)

        service.run(rule, job=job, now=NOW)

        assert seen == [ScheduleState.RUNNING, ScheduleState.RUNNING]

    def test_job_exception_is_recorded(self, service, make_scheduled_rule) -> None:
        rule = make_scheduled_rule()

        def job(claimed):
            raise RuntimeError("warehouse offline")

        schedule = service.run(rule, job=job, now=NOW)

        assert schedule.state == ScheduleState.SCHEDULED
        assert schedule.last_status == RunStatus.ERROR
        assert schedule.last_error == "warehouse offline"
        assert schedule.run_count == 1
        assert schedule.next_run == NEXT_MORNING

    def test_failed_executions_mark_error(self, service, make_scheduled_rule, make_ticket) -> None:
        make_ticket()
        make_ticket()
        rule = make_scheduled_rule(actions=[{"type": "assign_to_team", "parameters": {"team_id": "empty-team"}}])

        schedule = service.run(rule, now=NOW)

        assert schedule.last_status == RunStatus.ERROR
        assert schedule.last_error == "2 of 2 executions failed"

    def test_already_claimed_rule_is_skipped(self, service, make_scheduled_rule, rule_store) -> None:
        rule = make_scheduled_rule()
        rule_store.update_schedule(rule.rule_id, rule.schedule.model_copy(update={"state": ScheduleState.RUNNING}))
        calls = []

        assert service.run(rule, job=calls.append, now=NOW) is None
        assert calls == []

    def test_concurrent_runs_execute_once(self, service, make_scheduled_rule) -> None:
        rule = make_scheduled_rule()
        release = threading.Event()
        calls = []
        results = []
        barrier = threading.Barrier(2)

        def job(claimed):
            calls.append(claimed.rule_id)
            release.wait(5)

        def worker():
            barrier.wait()
            results.append(service.run(rule, job=job, now=NOW))

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()

        deadline = time.monotonic() + 5
        while not results and time.monotonic() < deadline:
            time.sleep(0.01)
        release.set()
        for t in threads:
            t.join(5)

        assert calls == [rule.rule_id]
        assert results[0] is None
        assert results[1].run_count == 1

    def test_rule_deleted_while_running(self, service, make_scheduled_rule, rule_store) -> None:
        rule = make_scheduled_rule()

        assert service.run(rule, job=lambda claimed: rule_store.delete_workflow_rule(rule.rule_id), now=NOW) is None

    def test_timing_edit_during_run_is_kept(self, service, make_scheduled_rule, rule_store) -> None:
        rule = make_scheduled_rule()

        def job(claimed):
            current = rule_store.get_workflow_rule(rule.rule_id).schedule
            rule_store.update_schedule(rule.rule_id, current.model_copy(update={"time": "18:30"}))

        schedule = service.run(rule, job=job, now=NOW)

        assert schedule.time == "18:30"
        assert schedule.next_run == NOW.replace(hour=18, minute=30)

    def test_no_job_configured(self, rule_store, make_scheduled_rule) -> None:
        with pytest.raises(SchedulingError):
            ScheduleService(rule_store).run(make_scheduled_rule(), now=NOW)

    def test_rule_without_schedule(self, service, make_workflow_rule) -> None:
        with pytest.raises(SchedulingError):
            service.run(make_workflow_rule(), job=lambda r: None, now=NOW)


class TestRunDue:
    """One tick over every due rule"""

    def test_summary(self, service, make_scheduled_rule) -> None:
        make_scheduled_rule()
        make_scheduled_rule()
        make_scheduled_rule(next_run=NOW + timedelta(hours=1))

        summary = service.run_due(now=NOW)

        assert summary == {"due": 2, "succeeded": 2, "failed": 0, "skipped": 0}
        assert service.get_due(NOW) == []

    def test_failures_counted(self, service, make_scheduled_rule) -> None:
        make_scheduled_rule()

        def job(claimed):
            raise ValueError("nope")

        assert service.run_due(job=job, now=NOW) == {"due": 1, "succeeded": 0, "failed": 1, "skipped": 0}


class TestInterruptedRun:
    """Claims left behind by an interrupted or dead worker"""

    def test_interrupt_releases_claim(self, service, make_scheduled_rule, rule_store) -> None:
        rule = make_scheduled_rule()

        def job(claimed):
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            service.run(rule, job=job, now=NOW)

        stored = rule_store.get_workflow_rule(rule.rule_id).schedule
        assert stored.state == ScheduleState.SCHEDULED
        assert stored.claimed_at is None
        assert stored.next_run == NOW - timedelta(minutes=1)
        assert stored.run_count == 0
        assert [r.rule_id for r in service.get_due(NOW + timedelta(days=7))] == [rule.rule_id]

    def test_stale_running_claim_is_run(self, service, make_scheduled_rule, rule_store) -> None:
        make_scheduled_rule(state=ScheduleState.RUNNING, claimed_at=NOW - timedelta(hours=1))
        calls = []

        [stuck] = service.get_due(NOW)
        schedule = service.run(stuck, job=lambda claimed: calls.append(claimed.rule_id), now=NOW)

        assert calls == [stuck.rule_id]
        assert schedule.state == ScheduleState.SCHEDULED
        assert schedule.run_count == 1
        assert schedule.next_run == NEXT_MORNING
        assert rule_store.get_workflow_rule(stuck.rule_id).schedule.claimed_at is None

    def test_reclaim_loses_to_newer_claim(self, service, make_scheduled_rule, rule_store) -> None:
        make_scheduled_rule(state=ScheduleState.RUNNING, claimed_at=NOW - timedelta(hours=1))
        [stuck] = service.get_due(NOW)
        rule_store.update_schedule(
            stuck.rule_id, stuck.schedule.model_copy(update={"claimed_at": NOW - timedelta(seconds=30)})
        )
        calls = []

        assert service.run(stuck, job=calls.append, now=NOW) is None
        assert calls == []

    def test_stale_finished_run_only_rescheduled(self, service, make_scheduled_rule, rule_store) -> None:
        make_scheduled_rule(
            state=ScheduleState.COMPLETED,
            claimed_at=NOW - timedelta(hours=1),
            last_status=RunStatus.SUCCESS,
            run_count=1,
        )
        calls = []

        [stuck] = service.get_due(NOW)
        assert service.run(stuck, job=calls.append, now=NOW) is None

        stored = rule_store.get_workflow_rule(stuck.rule_id).schedule
        assert calls == []
        assert stored.state == ScheduleState.SCHEDULED
        assert stored.claimed_at is None
        assert stored.run_count == 1
        assert stored.next_run == NEXT_MORNING
