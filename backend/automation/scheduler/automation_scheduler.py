"""Automation Scheduler - Periodic ticks for scheduled rules and escalations

Runs two interval jobs on an APScheduler background scheduler:
- scheduled workflow rules whose next run has passed
- escalation steps that have come due on unresolved tickets

Every tick is wrapped so that an error is logged and the next tick still
fires.
"""
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import settings
from ..container import AutomationContainer
from ..utils.logger import get_logger, set_correlation_id
from ..utils.idgen import generate_correlation_id
from ..utils.time import elapsed_ms, utc_now

logger = get_logger(__name__)


class AutomationScheduler:
    """
    APScheduler host for the automation core
    
    The scheduler only decides when to ask what is due; the schedule service
    and escalation manager decide what runs.
    """
    
    def __init__(self, container: AutomationContainer):
        self.container = container
        self.scheduler: Optional[BackgroundScheduler] = None
        self._is_running = False
    
    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Scheduler already running")
            return
        
        self.scheduler = BackgroundScheduler(timezone="UTC")
        
        self.scheduler.add_job(
            self.run_scheduled_rules,
            trigger=IntervalTrigger(seconds=settings.schedule_tick_seconds),
            id="run_scheduled_rules",
            name="Run due scheduled workflow rules",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        
        self.scheduler.add_job(
            self.process_escalations,
            trigger=IntervalTrigger(seconds=settings.escalation_tick_seconds),
            id="process_escalations",
            name="Apply due escalation steps",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        
        self.scheduler.start()
        self._is_running = True
        logger.info(
            "Automation scheduler started",
            extra={
                "schedule_tick_seconds": settings.schedule_tick_seconds,
                "escalation_tick_seconds": settings.escalation_tick_seconds
            }
        )
    
    def stop(self) -> None:
        """Stop the scheduler"""
        if self.scheduler and self._is_running:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Automation scheduler stopped")
    
    @property
    def is_running(self) -> bool:
        """Check if scheduler is running"""
        return self._is_running
    
    def run_scheduled_rules(self) -> None:
        """Tick: run every due scheduled rule"""
        set_correlation_id(generate_correlation_id())
        start_time = utc_now()
        try:
            summary = self.container.schedule_service.run_due()
            if summary["due"]:
                logger.info(
                    f"Scheduled rule tick complete: {summary['succeeded']} succeeded, "
                    f"{summary['failed']} failed, {summary['skipped']} skipped",
                    extra={"job_id": "run_scheduled_rules", "duration_ms": elapsed_ms(start_time, utc_now())}
                )
        except Exception as e:
            logger.error(
                f"Error in scheduled rule job: {e}",
                extra={"job_id": "run_scheduled_rules", "error_type": type(e).__name__},
                exc_info=True
            )
    
    def process_escalations(self) -> None:
        """Tick: apply due escalation steps"""
        set_correlation_id(generate_correlation_id())
        start_time = utc_now()
        try:
            summary = self.container.escalation_manager.process_due_escalations()
            if summary["escalated"] or summary["errors"]:
                logger.info(
                    f"Escalation tick complete: {summary['escalated']} escalated, {summary['errors']} errors",
                    extra={"job_id": "process_escalations", "duration_ms": elapsed_ms(start_time, utc_now())}
                )
        except Exception as e:
            logger.error(
                f"Error in escalation job: {e}",
                extra={"job_id": "process_escalations", "error_type": type(e).__name__},
                exc_info=True
            )


# Global scheduler instance
_scheduler: Optional[AutomationScheduler] = None


def get_scheduler(container: Optional[AutomationContainer] = None) -> AutomationScheduler:
    """Get or create the scheduler instance"""
    global _scheduler
    if _scheduler is None:
        if container is None:
            from ..container import build_mongo_container
            container = build_mongo_container()
        _scheduler = AutomationScheduler(container)
    return _scheduler


def start_scheduler(container: Optional[AutomationContainer] = None) -> AutomationScheduler:
    """Start the global scheduler"""
    scheduler = get_scheduler(container)
    scheduler.start()
    return scheduler


def stop_scheduler() -> None:
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
