"""ID Generation Utilities"""
import uuid
from datetime import datetime, timezone
from typing import Optional


def generate_id(prefix: Optional[str] = None) -> str:
    """
    Generate a unique ID with optional prefix
    
    Args:
        prefix: Optional prefix for the ID (e.g., 'WFR', 'EXE')
        
    Returns:
        Unique ID string
        
    Examples:
        >>> generate_id('WFR')
        'WFR-a1b2c3d4e5f6'
        >>> generate_id()
        'a1b2c3d4e5f6'
    """
    unique_part = uuid.uuid4().hex[:12]
    
    if prefix:
        return f"{prefix}-{unique_part}"
    return unique_part


def generate_workflow_rule_id() -> str:
    """Generate workflow rule ID"""
    return generate_id("WFR")


def generate_routing_rule_id() -> str:
    """Generate routing rule ID"""
    return generate_id("RTR")


def generate_escalation_path_id() -> str:
    """Generate escalation path ID"""
    return generate_id("ESC")


def generate_execution_id() -> str:
    """Generate workflow execution ID"""
    return generate_id("EXE")


def generate_correlation_id() -> str:
    """
    Generate a correlation ID for tracing one engine pass or scheduler tick
    
    Returns:
        Correlation ID string with timestamp prefix
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    unique_part = uuid.uuid4().hex[:8]
    return f"COR-{timestamp}-{unique_part}"
