"""Ticket Repository - Read and patch tickets owned by the ticketing system"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from pymongo.collection import Collection
from pymongo import ASCENDING, ReturnDocument

from .mongo_client import get_collection, to_document
from ..domain.models import Ticket
from ..domain.enums import RESOLVED_TICKET_STATUSES
from ..domain.errors import TicketNotFoundError
from ..domain.interfaces import TicketStore
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Oldest first; ticket_id breaks ties so pages never overlap
UNRESOLVED_ORDER = [("created_at", ASCENDING), ("ticket_id", ASCENDING)]

_RESOLVED_STATUS = re.compile(
    "^(" + "|".join(sorted(RESOLVED_TICKET_STATUSES)) + ")$", re.IGNORECASE
)


def unresolved_filter() -> Dict[str, Any]:
    """Match tickets whose status is not resolved or closed, in any case"""
    return {"status": {"$not": _RESOLVED_STATUS}}


class TicketRepository(TicketStore):
    """MongoDB ticket store"""
    
    def __init__(self, collection: Optional[Collection] = None):
        self._tickets: Collection = collection if collection is not None else get_collection("tickets")
    
    def create_ticket(self, ticket: Ticket) -> Ticket:
        """Insert a ticket (used by seeding and tests; tickets normally come from upstream)"""
        doc = to_document(ticket)
        doc["_id"] = ticket.ticket_id
        self._tickets.insert_one(doc)
        logger.info(f"Created ticket: {ticket.ticket_id}", extra={"ticket_id": ticket.ticket_id})
        return ticket
    
    def fetch_by_id(self, ticket_id: str) -> Optional[Ticket]:
        doc = self._tickets.find_one({"ticket_id": ticket_id})
        if doc:
            doc.pop("_id", None)
            return Ticket.model_validate(doc)
        return None
    
    def apply_patch(self, ticket_id: str, fields: Dict[str, Any]) -> Ticket:
        updates = to_document(dict(fields))
        updates["updated_at"] = utc_now()
        
        result = self._tickets.find_one_and_update(
            {"ticket_id": ticket_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        
        result.pop("_id", None)
        logger.debug(
            f"Patched ticket {ticket_id}: {sorted(fields)}",
            extra={"ticket_id": ticket_id}
        )
        return Ticket.model_validate(result)
    
    def list_unresolved(
        self,
        tenant_id: Optional[str] = None,
        limit: int = 200,
        after: Optional[Tuple[datetime, str]] = None
    ) -> List[Ticket]:
        query: Dict[str, Any] = unresolved_filter()
        if tenant_id:
            query["tenant_id"] = tenant_id
        if after is not None:
            created_at, ticket_id = after
            query["$or"] = [
                {"created_at": {"$gt": created_at}},
                {"created_at": created_at, "ticket_id": {"$gt": ticket_id}},
            ]
        
        tickets = []
        for doc in self._tickets.find(query).sort(UNRESOLVED_ORDER).limit(limit):
            doc.pop("_id", None)
            tickets.append(Ticket.model_validate(doc))
        return tickets
