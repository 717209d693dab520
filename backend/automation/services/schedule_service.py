"""
Schedule Service - Run scheduled workflow rules

Each scheduled rule moves through

    SCHEDULED -> RUNNING -> COMPLETED | FAILED -> SCHEDULED (next_run)

The RUNNING transition is a conditional write on the stored state, so two
ticks racing for the same rule run it once. The claim is stamped with
claimed_at and every later write of the run is conditional on that stamp.
A failed run is recorded in last_status/last_error and the rule is
rescheduled like a successful one; there is no retry and the schedule is
never paused.

A run that is interrupted releases its claim on the way out. A claim left
behind by a worker that died is treated as abandoned once it is older than
``schedule_claim_lease_seconds`` and is picked up again by get_due.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..config.settings import settings
from ..domain.models import RuleSchedule, WorkflowExecution, WorkflowRule
from ..domain.enums import ExecutionStatus, RunStatus, ScheduleState
from ..domain.errors import SchedulingError
from ..domain.interfaces import RuleStore
from ..engine.recurrence import next_run_for_schedule
from ..utils.time import ensure_utc, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


ScheduledJob = Callable[[WorkflowRule], Any]

FINISHED_STATES = (ScheduleState.COMPLETED, ScheduleState.FAILED)


def claim_stamp(now: datetime) -> datetime:
    """Claim time at millisecond precision, the resolution MongoDB stores"""
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class ScheduleService:
    """State machine driver for scheduled workflow rules"""

    def __init__(
        self,
        rule_store: RuleStore,
        job: Optional[ScheduledJob] = None,
        lease_seconds: Optional[int] = None
    ):
        self.rule_store = rule_store
        self.job = job
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.schedule_claim_lease_seconds

    def get_due(self, now: Optional[datetime] = None, limit: int = 100) -> List[WorkflowRule]:
        """Waiting rules whose next_run has passed, plus rules with an abandoned claim"""
        now = ensure_utc(now or utc_now())
        return self.rule_store.list_due_scheduled(
            now, limit=limit, stale_before=now - timedelta(seconds=self.lease_seconds)
        )

    def run(
        self,
        rule: WorkflowRule,
        job: Optional[ScheduledJob] = None,
        now: Optional[datetime] = None
    ) -> Optional[RuleSchedule]:
        """
        Run one scheduled rule through the state machine

        Args:
            rule: Due rule as returned by get_due
            job: Callable executed while RUNNING; defaults to the service job
            now: Run instant, used for last_run, the claim and the next occurrence

        Returns:
            The rescheduled RuleSchedule, or None when another worker claimed
            the rule first, the rule vanished mid-run, or an abandoned finished
            run was only rescheduled
        """
        job = job or self.job
        if job is None:
            raise SchedulingError("No job configured for scheduled rules")
        if rule.schedule is None:
            raise SchedulingError(f"Rule {rule.rule_id} has no schedule", details={"rule_id": rule.rule_id})

        now = ensure_utc(now or utc_now())
        previous = rule.schedule

        if previous.state in FINISHED_STATES:
            self._recover_finished(rule, now)
            return None

        if previous.state != ScheduleState.SCHEDULED:
            logger.warning(
                f"Reclaiming abandoned run of scheduled rule {rule.rule_id} claimed at {previous.claimed_at}",
                extra={"rule_id": rule.rule_id, "tenant_id": rule.tenant_id}
            )

        claim = claim_stamp(now)
        claimed = self.rule_store.update_schedule(
            rule.rule_id,
            previous.model_copy(update={"state": ScheduleState.RUNNING, "claimed_at": claim}),
            expected_state=previous.state,
            expected_claimed_at=previous.claimed_at if previous.state != ScheduleState.SCHEDULED else None
        )
        if claimed is None:
            logger.debug(f"Scheduled rule {rule.rule_id} already claimed", extra={"rule_id": rule.rule_id})
            return None

        settled = False
        try:
            rescheduled = self._run_claimed(claimed, job, claim, now)
            settled = True
            return rescheduled
        finally:
            if not settled:
                self._release(rule.rule_id, claim, now)

    def run_due(self, job: Optional[ScheduledJob] = None, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Run every due rule once

        Returns:
            Counts of due, succeeded, failed and skipped rules
        """
        now = ensure_utc(now or utc_now())
        summary = {"due": 0, "succeeded": 0, "failed": 0, "skipped": 0}

        for rule in self.get_due(now):
            summary["due"] += 1
            try:
                result = self.run(rule, job=job, now=now)
            except Exception as e:
                summary["failed"] += 1
                logger.error(
                    f"Could not run scheduled rule {rule.rule_id}: {e}",
                    extra={"rule_id": rule.rule_id},
                    exc_info=True
                )
                continue

            if result is None:
                summary["skipped"] += 1
            elif result.last_status == RunStatus.SUCCESS:
                summary["succeeded"] += 1
            else:
                summary["failed"] += 1

        return summary

    # =========================================================================
    # Run phases
    # =========================================================================

    def _run_claimed(
        self,
        rule: WorkflowRule,
        job: ScheduledJob,
        claim: datetime,
        now: datetime
    ) -> Optional[RuleSchedule]:
        logger.info(
            f"Running scheduled rule {rule.rule_id}",
            extra={"rule_id": rule.rule_id, "tenant_id": rule.tenant_id, "status": ScheduleState.RUNNING.value}
        )

        status, error = RunStatus.SUCCESS, None
        try:
            outcome = job(rule)
            error = self._failed_outcome(outcome)
            if error:
                status = RunStatus.ERROR
        except Exception as e:
            status, error = RunStatus.ERROR, str(e)
            logger.error(
                f"Scheduled rule {rule.rule_id} failed: {e}",
                extra={"rule_id": rule.rule_id, "error_type": type(e).__name__},
                exc_info=True
            )

        # Timing fields may have been edited while running; finish from the stored copy
        current = self.rule_store.get_workflow_rule(rule.rule_id)
        if current is None or current.schedule is None:
            logger.warning(f"Scheduled rule {rule.rule_id} removed while running", extra={"rule_id": rule.rule_id})
            return None

        finished_state = ScheduleState.COMPLETED if status == RunStatus.SUCCESS else ScheduleState.FAILED
        finished = current.schedule.model_copy(update={
            "state": finished_state,
            "last_run": now,
            "last_status": status,
            "last_error": error,
            "run_count": current.schedule.run_count + 1,
            "claimed_at": claim,
        })
        stored = self.rule_store.update_schedule(
            rule.rule_id, finished, expected_state=ScheduleState.RUNNING, expected_claimed_at=claim
        )
        if stored is None:
            logger.warning(
                f"Schedule of rule {rule.rule_id} no longer held by this run",
                extra={"rule_id": rule.rule_id}
            )
            return None

        rescheduled = finished.model_copy(update={
            "state": ScheduleState.SCHEDULED,
            "next_run": self._upcoming(rule.rule_id, finished, now),
            "claimed_at": None,
        })
        self.rule_store.update_schedule(
            rule.rule_id, rescheduled, expected_state=finished_state, expected_claimed_at=claim
        )

        logger.info(
            f"Scheduled rule {rule.rule_id} {finished_state.value}, next run {rescheduled.next_run}",
            extra={"rule_id": rule.rule_id, "status": status.value}
        )
        return rescheduled

    def _release(self, rule_id: str, claim: datetime, now: datetime) -> None:
        """
        Hand a schedule this run still holds back to SCHEDULED

        A run that never finished keeps its next_run and is due again on the
        next tick; a run that finished moves on to the next occurrence.
        """
        try:
            current = self.rule_store.get_workflow_rule(rule_id)
            if current is None or current.schedule is None:
                return
            schedule = current.schedule
            if schedule.state == ScheduleState.SCHEDULED or schedule.claimed_at != claim:
                return

            update: Dict[str, Any] = {"state": ScheduleState.SCHEDULED, "claimed_at": None}
            if schedule.state in FINISHED_STATES:
                update["next_run"] = self._upcoming(rule_id, schedule, now)
            self.rule_store.update_schedule(
                rule_id, schedule.model_copy(update=update),
                expected_state=schedule.state, expected_claimed_at=claim
            )
            logger.warning(
                f"Released interrupted run of scheduled rule {rule_id}",
                extra={"rule_id": rule_id, "status": schedule.state.value}
            )
        except Exception as e:
            logger.error(
                f"Could not release scheduled rule {rule_id}: {e}",
                extra={"rule_id": rule_id},
                exc_info=True
            )

    def _recover_finished(self, rule: WorkflowRule, now: datetime) -> None:
        """Reschedule a run that finished but was never moved back to SCHEDULED"""
        schedule = rule.schedule
        recovered = schedule.model_copy(update={
            "state": ScheduleState.SCHEDULED,
            "next_run": self._upcoming(rule.rule_id, schedule, now),
            "claimed_at": None,
        })
        stored = self.rule_store.update_schedule(
            rule.rule_id, recovered,
            expected_state=schedule.state, expected_claimed_at=schedule.claimed_at
        )
        if stored is not None:
            logger.warning(
                f"Rescheduled abandoned {schedule.state.value} run of rule {rule.rule_id}",
                extra={"rule_id": rule.rule_id, "tenant_id": rule.tenant_id}
            )

    @staticmethod
    def _upcoming(rule_id: str, schedule: RuleSchedule, now: datetime) -> Optional[datetime]:
        try:
            return next_run_for_schedule(schedule, now)
        except SchedulingError as e:
            logger.error(
                f"Cannot compute next run of rule {rule_id}: {e.message}",
                extra={"rule_id": rule_id}
            )
            return None

    @staticmethod
    def _failed_outcome(outcome: Any) -> Optional[str]:
        """Error text when a job returned executions that failed"""
        if not isinstance(outcome, list):
            return None
        executions = [e for e in outcome if isinstance(e, WorkflowExecution)]
        failed = [e for e in executions if e.status == ExecutionStatus.FAILED]
        if not failed:
            return None
        return f"{len(failed)} of {len(executions)} executions failed"
