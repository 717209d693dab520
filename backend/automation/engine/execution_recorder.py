"""Execution Recorder - Workflow execution history"""
from typing import Any, Dict, List, Optional

from ..domain.models import ActionResult, WorkflowExecution, WorkflowRule
from ..domain.enums import ExecutionStatus
from ..domain.interfaces import ExecutionStore
from ..utils.idgen import generate_execution_id
from ..utils.time import elapsed_ms, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ExecutionRecorder:
    """
    Persist one WorkflowExecution per (rule, ticket) match
    
    An execution is written as running before any action is applied and
    closed once the action results are known. A rule whose results contain
    any failure finishes as failed.
    """
    
    def __init__(self, store: ExecutionStore):
        self.store = store
    
    def start(
        self,
        rule: WorkflowRule,
        ticket_snapshot: Dict[str, Any],
        triggered_by: Optional[str] = None,
        trigger_event: Optional[str] = None
    ) -> WorkflowExecution:
        """Open a running execution for a matched rule"""
        execution = WorkflowExecution(
            execution_id=generate_execution_id(),
            workflow_id=rule.rule_id,
            ticket_id=ticket_snapshot.get("ticket_id"),
            tenant_id=rule.tenant_id,
            triggered_by=triggered_by or "system",
            trigger_event=trigger_event,
            status=ExecutionStatus.RUNNING,
            input=ticket_snapshot,
            started_at=utc_now()
        )
        return self.store.create_execution(execution)
    
    def finish(self, execution: WorkflowExecution, results: List[ActionResult]) -> WorkflowExecution:
        """
        Close an execution with its action results
        
        Returns:
            The stored execution, completed when every action succeeded and
            failed otherwise
        """
        completed_at = utc_now()
        failed = [r.action_type for r in results if not r.success]
        status = ExecutionStatus.FAILED if failed else ExecutionStatus.COMPLETED
        error = f"Failed actions: {', '.join(failed)}" if failed else None
        
        updated = self.store.update_execution(
            execution.execution_id,
            {
                "status": status,
                "output": results,
                "completed_at": completed_at,
                "duration_ms": elapsed_ms(execution.started_at, completed_at),
                "error": error,
            }
        )
        
        logger.info(
            f"Execution {execution.execution_id} {status.value}",
            extra={
                "execution_id": execution.execution_id,
                "rule_id": execution.workflow_id,
                "ticket_id": execution.ticket_id,
                "status": status.value,
                "duration_ms": updated.duration_ms
            }
        )
        return updated
    
    def fail(
        self,
        execution: WorkflowExecution,
        error: str,
        results: Optional[List[ActionResult]] = None
    ) -> WorkflowExecution:
        """Close an execution that raised before producing results"""
        completed_at = utc_now()
        updated = self.store.update_execution(
            execution.execution_id,
            {
                "status": ExecutionStatus.FAILED,
                "output": results or [],
                "completed_at": completed_at,
                "duration_ms": elapsed_ms(execution.started_at, completed_at),
                "error": error,
            }
        )
        
        logger.error(
            f"Execution {execution.execution_id} failed: {error}",
            extra={
                "execution_id": execution.execution_id,
                "rule_id": execution.workflow_id,
                "ticket_id": execution.ticket_id,
                "status": ExecutionStatus.FAILED.value
            }
        )
        return updated
    
    def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        return self.store.get_execution(execution_id)
    
    def list_for_rule(self, rule_id: str, limit: int = 20, skip: int = 0) -> List[WorkflowExecution]:
        """Executions of a rule, newest first"""
        return self.store.list_for_rule(rule_id, skip=skip, limit=limit)
    
    def list_for_ticket(
        self,
        ticket_id: str,
        limit: int = 20,
        skip: int = 0,
        tenant_id: Optional[str] = None
    ) -> List[WorkflowExecution]:
        """Executions on a ticket, newest first, optionally within one tenant"""
        return self.store.list_for_ticket(ticket_id, skip=skip, limit=limit, tenant_id=tenant_id)
    
    def count(self, tenant_id: str, status: Optional[ExecutionStatus] = None) -> int:
        return self.store.count_executions(tenant_id, status=status)
    
    def average_duration_ms(self, tenant_id: str) -> float:
        return self.store.average_duration_ms(tenant_id)
