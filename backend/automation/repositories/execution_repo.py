"""Execution Repository - Workflow execution history"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING, ReturnDocument

from .mongo_client import get_collection, to_document
from ..domain.models import WorkflowExecution
from ..domain.enums import ExecutionStatus
from ..domain.errors import NotFoundError
from ..domain.interfaces import ExecutionStore
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ExecutionRepository(ExecutionStore):
    """MongoDB execution store"""
    
    def __init__(self, collection: Optional[Collection] = None):
        self._executions: Collection = (
            collection if collection is not None else get_collection("workflow_executions")
        )
    
    def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        doc = to_document(execution)
        doc["_id"] = execution.execution_id
        self._executions.insert_one(doc)
        return execution
    
    def update_execution(self, execution_id: str, updates: Dict[str, Any]) -> WorkflowExecution:
        result = self._executions.find_one_and_update(
            {"execution_id": execution_id},
            {"$set": to_document(updates)},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            raise NotFoundError(
                f"Execution {execution_id} not found", details={"execution_id": execution_id}
            )
        return self._to_execution(result)
    
    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        doc = self._executions.find_one({"execution_id": execution_id})
        return self._to_execution(doc) if doc else None
    
    def list_for_rule(self, rule_id: str, skip: int = 0, limit: int = 20) -> List[WorkflowExecution]:
        cursor = self._executions.find({"workflow_id": rule_id}).sort("started_at", DESCENDING).skip(skip).limit(limit)
        return [self._to_execution(doc) for doc in cursor]
    
    def list_for_ticket(
        self,
        ticket_id: str,
        skip: int = 0,
        limit: int = 20,
        tenant_id: Optional[str] = None
    ) -> List[WorkflowExecution]:
        query: Dict[str, Any] = {"ticket_id": ticket_id}
        if tenant_id is not None:
            query["tenant_id"] = tenant_id
        cursor = self._executions.find(query).sort("started_at", DESCENDING).skip(skip).limit(limit)
        return [self._to_execution(doc) for doc in cursor]
    
    def count_executions(self, tenant_id: str, status: Optional[ExecutionStatus] = None) -> int:
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if status is not None:
            query["status"] = ExecutionStatus(status).value
        return self._executions.count_documents(query)
    
    def average_duration_ms(self, tenant_id: str) -> float:
        pipeline = [
            {"$match": {"tenant_id": tenant_id, "duration_ms": {"$ne": None}}},
            {"$group": {"_id": None, "average": {"$avg": "$duration_ms"}}},
        ]
        for row in self._executions.aggregate(pipeline):
            return float(row.get("average") or 0.0)
        return 0.0
    
    @staticmethod
    def _to_execution(doc: Dict[str, Any]) -> WorkflowExecution:
        doc.pop("_id", None)
        return WorkflowExecution.model_validate(doc)
