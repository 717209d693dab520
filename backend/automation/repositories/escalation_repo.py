"""Escalation Repository - Data access for escalation paths"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, to_document
from ..config.settings import settings
from ..domain.models import EscalationPath
from ..domain.errors import EscalationPathNotFoundError, AlreadyExistsError, ConcurrencyError
from ..domain.interfaces import EscalationPathStore
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class EscalationPathRepository(EscalationPathStore):
    """
    MongoDB escalation path store
    
    The one-default-per-tenant rule is backed by a partial unique index on
    tenant_id where is_default is true (see create_indexes). set_default
    clears the other defaults, then sets this one, retrying when a
    concurrent swap wins the index.
    """
    
    def __init__(self, collection: Optional[Collection] = None, swap_retries: Optional[int] = None):
        self._paths: Collection = collection if collection is not None else get_collection("escalation_paths")
        self.swap_retries = swap_retries or settings.default_path_swap_retries
    
    def create_path(self, path: EscalationPath) -> EscalationPath:
        doc = to_document(path)
        doc["_id"] = path.path_id
        doc["is_default"] = False
        try:
            self._paths.insert_one(doc)
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Escalation path {path.path_id} already exists")
        logger.info(
            f"Created escalation path: {path.path_id}",
            extra={"path_id": path.path_id, "tenant_id": path.tenant_id}
        )
        return path.model_copy(update={"is_default": False})
    
    def get_path(self, path_id: str) -> Optional[EscalationPath]:
        doc = self._paths.find_one({"path_id": path_id})
        return self._to_path(doc) if doc else None
    
    def update_path(self, path_id: str, updates: Dict[str, Any]) -> EscalationPath:
        updates = {k: v for k, v in updates.items() if k != "is_default"}
        result = self._paths.find_one_and_update(
            {"path_id": path_id},
            {"$set": to_document(updates)},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            raise EscalationPathNotFoundError(f"Escalation path {path_id} not found", details={"path_id": path_id})
        return self._to_path(result)
    
    def delete_path(self, path_id: str) -> bool:
        result = self._paths.delete_one({"path_id": path_id})
        return result.deleted_count > 0
    
    def list_paths(self, tenant_id: str, is_active: Optional[bool] = None) -> List[EscalationPath]:
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if is_active is not None:
            query["is_active"] = is_active
        cursor = self._paths.find(query).sort("created_at", ASCENDING)
        return [self._to_path(doc) for doc in cursor]
    
    def get_default(self, tenant_id: str) -> Optional[EscalationPath]:
        doc = self._paths.find_one({"tenant_id": tenant_id, "is_default": True})
        return self._to_path(doc) if doc else None
    
    def set_default(self, tenant_id: str, path_id: str) -> EscalationPath:
        for attempt in range(1, self.swap_retries + 1):
            if self._paths.find_one({"path_id": path_id, "tenant_id": tenant_id}) is None:
                raise EscalationPathNotFoundError(
                    f"Escalation path {path_id} not found", details={"path_id": path_id}
                )
            
            now = utc_now()
            self._paths.update_many(
                {"tenant_id": tenant_id, "is_default": True, "path_id": {"$ne": path_id}},
                {"$set": {"is_default": False, "updated_at": now}}
            )
            try:
                result = self._paths.find_one_and_update(
                    {"path_id": path_id, "tenant_id": tenant_id},
                    {"$set": {"is_default": True, "updated_at": now}},
                    return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError:
                logger.warning(
                    f"Default path swap for tenant {tenant_id} lost a race (attempt {attempt})",
                    extra={"tenant_id": tenant_id, "path_id": path_id}
                )
                continue
            
            if result is None:
                raise EscalationPathNotFoundError(
                    f"Escalation path {path_id} not found", details={"path_id": path_id}
                )
            logger.info(
                f"Escalation path {path_id} is now the default",
                extra={"tenant_id": tenant_id, "path_id": path_id}
            )
            return self._to_path(result)
        
        raise ConcurrencyError(
            f"Could not make {path_id} the default path after {self.swap_retries} attempts",
            details={"tenant_id": tenant_id, "path_id": path_id}
        )
    
    def clear_default(self, tenant_id: str, path_id: str) -> Optional[EscalationPath]:
        result = self._paths.find_one_and_update(
            {"path_id": path_id, "tenant_id": tenant_id},
            {"$set": {"is_default": False, "updated_at": utc_now()}},
            return_document=ReturnDocument.AFTER
        )
        return self._to_path(result) if result else None
    
    @staticmethod
    def _to_path(doc: Dict[str, Any]) -> EscalationPath:
        doc.pop("_id", None)
        return EscalationPath.model_validate(doc)
