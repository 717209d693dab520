"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""
    
    error_code: str = "DOMAIN_ERROR"
    
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a serializable dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Authorization Errors
class AccessDeniedError(DomainError):
    """Tenant or ownership mismatch"""
    error_code = "ACCESS_DENIED"


# Validation Errors
class ValidationError(DomainError):
    """Input validation failed"""
    error_code = "VALIDATION_ERROR"


class InvalidConditionError(ValidationError):
    """Condition operator or value outside the supported set"""
    error_code = "INVALID_CONDITION"


class InvalidActionError(ValidationError):
    """Action type or parameters outside the supported set"""
    error_code = "INVALID_ACTION"


class SchedulingError(ValidationError):
    """Malformed time string, unknown timezone or unsupported frequency"""
    error_code = "SCHEDULING_ERROR"


class InvalidEscalationPathError(ValidationError):
    """Escalation path steps are malformed"""
    error_code = "INVALID_ESCALATION_PATH"


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"


class TicketNotFoundError(NotFoundError):
    """Ticket not found"""
    error_code = "TICKET_NOT_FOUND"


class RuleNotFoundError(NotFoundError):
    """Workflow or routing rule not found"""
    error_code = "RULE_NOT_FOUND"


class EscalationPathNotFoundError(NotFoundError):
    """Escalation path not found"""
    error_code = "ESCALATION_PATH_NOT_FOUND"


# Conflict Errors
class ConflictError(DomainError):
    """Resource conflict (e.g., concurrent modification)"""
    error_code = "CONFLICT"


class ConcurrencyError(ConflictError):
    """Optimistic concurrency conflict"""
    error_code = "CONCURRENCY_CONFLICT"


class AlreadyExistsError(ConflictError):
    """Resource already exists"""
    error_code = "ALREADY_EXISTS"


# Engine Errors
class EngineError(DomainError):
    """Rule engine error"""
    error_code = "ENGINE_ERROR"


class ActionExecutionError(EngineError):
    """A single action failed; captured into its ActionResult"""
    error_code = "ACTION_EXECUTION_ERROR"


# External Service Errors
class ExternalServiceError(DomainError):
    """External collaborator failure"""
    error_code = "EXTERNAL_SERVICE_ERROR"


class NotificationDispatchError(ExternalServiceError):
    """Notification dispatch failed"""
    error_code = "NOTIFICATION_DISPATCH_ERROR"


class TeamResolutionError(ExternalServiceError):
    """Team assignee could not be resolved"""
    error_code = "TEAM_RESOLUTION_ERROR"
