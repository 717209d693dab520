"""MongoDB Client - Connection and Collection Management"""
from enum import Enum
from typing import Any, Dict, Optional
from pymongo import MongoClient as PyMongoClient
from pymongo.database import Database
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure
from pydantic import BaseModel

from ..config.settings import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Global client instance
_client: Optional[PyMongoClient] = None
_database: Optional[Database] = None


def get_client() -> PyMongoClient:
    """Get or create MongoDB client"""
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB: {settings.mongo_uri}")
        _client = PyMongoClient(
            settings.mongo_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
        )
        try:
            _client.admin.command("ping")
            logger.info("MongoDB connection successful")
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failed: {e}")
            raise
    return _client


def get_database() -> Database:
    """Get the application database"""
    global _database
    if _database is None:
        client = get_client()
        _database = client[settings.mongo_db]
        logger.info(f"Using database: {settings.mongo_db}")
    return _database


def get_collection(name: str) -> Collection:
    """Get a collection from the database"""
    db = get_database()
    return db[name]


def close_connection() -> None:
    """Close MongoDB connection"""
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


def to_document(value: Any) -> Any:
    """Convert models, enums and tuples to BSON values; datetimes stay native"""
    if isinstance(value, BaseModel):
        return to_document(value.model_dump())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_document(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_document(v) for v in value]
    return value


def create_indexes() -> None:
    """Create all required indexes"""
    db = get_database()
    logger.info("Creating MongoDB indexes...")
    
    # Workflow rules collection
    workflow_rules = db["workflow_rules"]
    workflow_rules.create_index("rule_id", unique=True)
    workflow_rules.create_index([
        ("tenant_id", ASCENDING), ("is_active", ASCENDING),
        ("priority", DESCENDING), ("created_at", DESCENDING)
    ])
    workflow_rules.create_index([("tenant_id", ASCENDING), ("triggers", ASCENDING)])
    workflow_rules.create_index([
        ("schedule.state", ASCENDING), ("schedule.next_run", ASCENDING)
    ])
    
    # Routing rules collection
    routing_rules = db["routing_rules"]
    routing_rules.create_index("rule_id", unique=True)
    routing_rules.create_index([
        ("tenant_id", ASCENDING), ("is_active", ASCENDING),
        ("priority", DESCENDING), ("created_at", DESCENDING)
    ])
    
    # Escalation paths collection; one default per tenant
    escalation_paths = db["escalation_paths"]
    escalation_paths.create_index("path_id", unique=True)
    escalation_paths.create_index([("tenant_id", ASCENDING), ("created_at", ASCENDING)])
    escalation_paths.create_index(
        "tenant_id",
        name="one_default_path_per_tenant",
        unique=True,
        partialFilterExpression={"is_default": True}
    )
    
    # Workflow executions collection
    workflow_executions = db["workflow_executions"]
    workflow_executions.create_index("execution_id", unique=True)
    workflow_executions.create_index([("workflow_id", ASCENDING), ("started_at", DESCENDING)])
    workflow_executions.create_index([("ticket_id", ASCENDING), ("started_at", DESCENDING)])
    workflow_executions.create_index([("tenant_id", ASCENDING), ("status", ASCENDING)])
    
    # Tickets collection (owned by the ticketing system, read here)
    tickets = db["tickets"]
    tickets.create_index("ticket_id", unique=True)
    tickets.create_index([("tenant_id", ASCENDING), ("status", ASCENDING)])
    tickets.create_index([
        ("tenant_id", ASCENDING), ("created_at", ASCENDING), ("ticket_id", ASCENDING)
    ])
    
    logger.info("MongoDB indexes created successfully")


def health_check() -> Dict[str, Any]:
    """Check MongoDB health"""
    try:
        client = get_client()
        client.admin.command("ping")
        return {
            "status": "healthy",
            "database": settings.mongo_db,
            "connection": "ok"
        }
    except Exception as e:
        logger.error(f"MongoDB health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": settings.mongo_db,
            "error": str(e)
        }
