"""Repository modules - Data access layer"""
from .mongo_client import get_database, get_collection, create_indexes, close_connection
from .ticket_repo import TicketRepository
from .rule_repo import RuleRepository
from .escalation_repo import EscalationPathRepository
from .execution_repo import ExecutionRepository
from .team_repo import TeamRepository

__all__ = [
    "get_database",
    "get_collection",
    "create_indexes",
    "close_connection",
    "TicketRepository",
    "RuleRepository",
    "EscalationPathRepository",
    "ExecutionRepository",
    "TeamRepository",
]
