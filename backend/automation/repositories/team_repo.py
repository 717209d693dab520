"""Team Repository - Resolve team assignments to an agent"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING

from .mongo_client import get_collection
from .ticket_repo import unresolved_filter
from ..domain.interfaces import TeamResolver
from ..utils.logger import get_logger

logger = get_logger(__name__)


class TeamRepository(TeamResolver):
    """
    Least-loaded team assignment
    
    Reads active, available members of the team from ``team_members`` and
    picks the one with the fewest unresolved tickets assigned. Ties go to
    the member who joined first.
    """
    
    def __init__(
        self,
        members: Optional[Collection] = None,
        tickets: Optional[Collection] = None
    ):
        self._members: Collection = members if members is not None else get_collection("team_members")
        self._tickets: Collection = tickets if tickets is not None else get_collection("tickets")
    
    def list_available_members(self, team_id: str) -> List[Dict[str, Any]]:
        query = {"team_id": team_id, "is_active": True, "is_available": {"$ne": False}}
        members = []
        for doc in self._members.find(query).sort("joined_at", ASCENDING):
            doc.pop("_id", None)
            members.append(doc)
        return members
    
    def resolve_assignee(self, team_id: str) -> Optional[str]:
        members = self.list_available_members(team_id)
        if not members:
            logger.info(f"Team {team_id} has no available members")
            return None
        
        chosen: Optional[str] = None
        lowest_load: Optional[int] = None
        for member in members:
            load = self._tickets.count_documents({
                "assigned_agent_id": member["user_id"],
                **unresolved_filter(),
            })
            if lowest_load is None or load < lowest_load:
                chosen, lowest_load = member["user_id"], load
        
        logger.debug(f"Team {team_id} resolved to {chosen} (load {lowest_load})")
        return chosen
