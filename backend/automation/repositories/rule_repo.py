"""Rule Repository - Data access for workflow and routing rules"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, to_document
from ..domain.models import WorkflowRule, RoutingRule, RuleSchedule
from ..domain.enums import RuleType, ScheduleState
from ..domain.errors import RuleNotFoundError, AlreadyExistsError
from ..domain.interfaces import RuleStore
from ..domain.triggers import trigger_patterns
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Highest priority first, newest first on ties
RULE_ORDER = [("priority", DESCENDING), ("created_at", DESCENDING)]

# Schedule states a crashed run can leave behind
ABANDONABLE_STATES = (ScheduleState.RUNNING, ScheduleState.COMPLETED, ScheduleState.FAILED)


class RuleRepository(RuleStore):
    """MongoDB rule store"""
    
    def __init__(
        self,
        workflow_rules: Optional[Collection] = None,
        routing_rules: Optional[Collection] = None
    ):
        self._workflow_rules: Collection = (
            workflow_rules if workflow_rules is not None else get_collection("workflow_rules")
        )
        self._routing_rules: Collection = (
            routing_rules if routing_rules is not None else get_collection("routing_rules")
        )
    
    # =========================================================================
    # Workflow Rules
    # =========================================================================
    
    def create_workflow_rule(self, rule: WorkflowRule) -> WorkflowRule:
        doc = to_document(rule)
        doc["_id"] = rule.rule_id
        try:
            self._workflow_rules.insert_one(doc)
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Workflow rule {rule.rule_id} already exists")
        logger.info(
            f"Created workflow rule: {rule.rule_id}",
            extra={"rule_id": rule.rule_id, "tenant_id": rule.tenant_id}
        )
        return rule
    
    def get_workflow_rule(self, rule_id: str) -> Optional[WorkflowRule]:
        doc = self._workflow_rules.find_one({"rule_id": rule_id})
        return self._to_workflow_rule(doc) if doc else None
    
    def update_workflow_rule(self, rule_id: str, updates: Dict[str, Any]) -> WorkflowRule:
        result = self._workflow_rules.find_one_and_update(
            {"rule_id": rule_id},
            {"$set": to_document(updates)},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            raise RuleNotFoundError(f"Workflow rule {rule_id} not found", details={"rule_id": rule_id})
        return self._to_workflow_rule(result)
    
    def delete_workflow_rule(self, rule_id: str) -> bool:
        result = self._workflow_rules.delete_one({"rule_id": rule_id})
        return result.deleted_count > 0
    
    def list_workflow_rules(
        self,
        tenant_id: str,
        rule_type: Optional[RuleType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowRule]:
        query = self._workflow_query(tenant_id, rule_type, is_active, search)
        cursor = self._workflow_rules.find(query).sort(RULE_ORDER).skip(skip).limit(limit)
        return [self._to_workflow_rule(doc) for doc in cursor]
    
    def count_workflow_rules(
        self,
        tenant_id: str,
        rule_type: Optional[RuleType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> int:
        return self._workflow_rules.count_documents(
            self._workflow_query(tenant_id, rule_type, is_active, search)
        )
    
    def find_workflow_rule_by_name(self, tenant_id: str, name: str) -> Optional[WorkflowRule]:
        doc = self._workflow_rules.find_one({"tenant_id": tenant_id, "name": name})
        return self._to_workflow_rule(doc) if doc else None
    
    def list_active_by_trigger_event(self, tenant_id: str, event_name: str) -> List[WorkflowRule]:
        patterns = trigger_patterns(event_name)
        if not patterns:
            return []
        query = {"tenant_id": tenant_id, "is_active": True, "triggers": {"$in": patterns}}
        return [self._to_workflow_rule(doc) for doc in self._workflow_rules.find(query).sort(RULE_ORDER)]
    
    def increment_execution_count(self, rule_id: str, executed_at: datetime) -> Optional[WorkflowRule]:
        result = self._workflow_rules.find_one_and_update(
            {"rule_id": rule_id},
            {"$inc": {"execution_count": 1}, "$set": {"last_executed": executed_at}},
            return_document=ReturnDocument.AFTER
        )
        return self._to_workflow_rule(result) if result else None
    
    def list_due_scheduled(
        self,
        now: datetime,
        limit: int = 100,
        stale_before: Optional[datetime] = None
    ) -> List[WorkflowRule]:
        due = {
            "schedule.state": ScheduleState.SCHEDULED.value,
            "schedule.next_run": {"$lte": now},
        }
        query: Dict[str, Any] = {"is_active": True, "schedule.is_active": True}
        if stale_before is None:
            query.update(due)
        else:
            abandoned = {
                "schedule.state": {"$in": [s.value for s in ABANDONABLE_STATES]},
                "$or": [
                    {"schedule.claimed_at": None},
                    {"schedule.claimed_at": {"$lt": stale_before}},
                ],
            }
            query["$or"] = [due, abandoned]
        
        cursor = self._workflow_rules.find(query).sort("schedule.next_run", 1).limit(limit)
        return [self._to_workflow_rule(doc) for doc in cursor]
    
    def update_schedule(
        self,
        rule_id: str,
        schedule: RuleSchedule,
        expected_state: Optional[ScheduleState] = None,
        expected_claimed_at: Optional[datetime] = None
    ) -> Optional[WorkflowRule]:
        filter_query: Dict[str, Any] = {"rule_id": rule_id}
        if expected_state is not None:
            filter_query["schedule.state"] = expected_state.value
        if expected_claimed_at is not None:
            filter_query["schedule.claimed_at"] = expected_claimed_at
        
        result = self._workflow_rules.find_one_and_update(
            filter_query,
            {"$set": {"schedule": to_document(schedule)}},
            return_document=ReturnDocument.AFTER
        )
        return self._to_workflow_rule(result) if result else None
    
    # =========================================================================
    # Routing Rules
    # =========================================================================
    
    def create_routing_rule(self, rule: RoutingRule) -> RoutingRule:
        doc = to_document(rule)
        doc["_id"] = rule.rule_id
        try:
            self._routing_rules.insert_one(doc)
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Routing rule {rule.rule_id} already exists")
        logger.info(
            f"Created routing rule: {rule.rule_id}",
            extra={"rule_id": rule.rule_id, "tenant_id": rule.tenant_id}
        )
        return rule
    
    def get_routing_rule(self, rule_id: str) -> Optional[RoutingRule]:
        doc = self._routing_rules.find_one({"rule_id": rule_id})
        return self._to_routing_rule(doc) if doc else None
    
    def update_routing_rule(self, rule_id: str, updates: Dict[str, Any]) -> RoutingRule:
        result = self._routing_rules.find_one_and_update(
            {"rule_id": rule_id},
            {"$set": to_document(updates)},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            raise RuleNotFoundError(f"Routing rule {rule_id} not found", details={"rule_id": rule_id})
        return self._to_routing_rule(result)
    
    def delete_routing_rule(self, rule_id: str) -> bool:
        result = self._routing_rules.delete_one({"rule_id": rule_id})
        return result.deleted_count > 0
    
    def list_routing_rules(
        self,
        tenant_id: str,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[RoutingRule]:
        query = self._routing_query(tenant_id, is_active, search)
        cursor = self._routing_rules.find(query).sort(RULE_ORDER).skip(skip).limit(limit)
        return [self._to_routing_rule(doc) for doc in cursor]
    
    def count_routing_rules(
        self,
        tenant_id: str,
        is_active: Optional[bool] = None,
        search: Optional[str] = None
    ) -> int:
        return self._routing_rules.count_documents(self._routing_query(tenant_id, is_active, search))
    
    def list_active_routing_rules(self, tenant_id: str) -> List[RoutingRule]:
        cursor = self._routing_rules.find({"tenant_id": tenant_id, "is_active": True}).sort(RULE_ORDER)
        return [self._to_routing_rule(doc) for doc in cursor]
    
    def increment_match_count(self, rule_id: str, matched_at: datetime) -> Optional[RoutingRule]:
        result = self._routing_rules.find_one_and_update(
            {"rule_id": rule_id},
            {"$inc": {"match_count": 1}, "$set": {"last_matched": matched_at}},
            return_document=ReturnDocument.AFTER
        )
        return self._to_routing_rule(result) if result else None
    
    # =========================================================================
    # Helpers
    # =========================================================================
    
    @staticmethod
    def _workflow_query(
        tenant_id: str,
        rule_type: Optional[RuleType],
        is_active: Optional[bool],
        search: Optional[str]
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if rule_type:
            query["type"] = RuleType(rule_type).value
        if is_active is not None:
            query["is_active"] = is_active
        if search:
            query["name"] = {"$regex": re.escape(search), "$options": "i"}
        return query
    
    @staticmethod
    def _routing_query(tenant_id: str, is_active: Optional[bool], search: Optional[str]) -> Dict[str, Any]:
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if is_active is not None:
            query["is_active"] = is_active
        if search:
            query["name"] = {"$regex": re.escape(search), "$options": "i"}
        return query
    
    @staticmethod
    def _to_workflow_rule(doc: Dict[str, Any]) -> WorkflowRule:
        doc.pop("_id", None)
        return WorkflowRule.model_validate(doc)
    
    @staticmethod
    def _to_routing_rule(doc: Dict[str, Any]) -> RoutingRule:
        doc.pop("_id", None)
        return RoutingRule.model_validate(doc)
