"""Request Models - Create/update payloads for rules and escalation paths"""
from typing import Any, Dict, List, Optional, Type, TypeVar, Union
from pydantic import BaseModel, Field, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .enums import RuleType
from .models import Action, Condition, EscalationStep, WorkflowRule, RoutingRule, EscalationPath
from .errors import ValidationError


RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_request(model: Type[RequestT], data: Union[RequestT, Dict[str, Any]]) -> RequestT:
    """
    Coerce a raw payload into a request model
    
    Raises:
        ValidationError: With the pydantic error list in details
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details={"errors": e.errors(include_url=False)}
        )


class ScheduleRequest(BaseModel):
    """Recurrence fields accepted from callers"""
    model_config = ConfigDict(extra="forbid")
    
    frequency: str
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    time: str
    timezone: Optional[str] = None
    is_active: bool = True


class CreateWorkflowRuleRequest(BaseModel):
    """Create a workflow rule"""
    model_config = ConfigDict(extra="forbid")
    
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: RuleType = RuleType.CUSTOM
    priority: int = 0
    is_active: bool = True
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    triggers: List[str] = Field(default_factory=list)
    schedule: Optional[ScheduleRequest] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateWorkflowRuleRequest(BaseModel):
    """Partial update of a workflow rule; unset fields are left unchanged"""
    model_config = ConfigDict(extra="forbid")
    
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    type: Optional[RuleType] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    conditions: Optional[List[Condition]] = None
    actions: Optional[List[Action]] = None
    triggers: Optional[List[str]] = None
    schedule: Optional[ScheduleRequest] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateRoutingRuleRequest(BaseModel):
    """Create a routing rule"""
    model_config = ConfigDict(extra="forbid")
    
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: int = 0
    is_active: bool = True
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)


class UpdateRoutingRuleRequest(BaseModel):
    """Partial update of a routing rule"""
    model_config = ConfigDict(extra="forbid")
    
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    conditions: Optional[List[Condition]] = None
    actions: Optional[List[Action]] = None


class CreateEscalationPathRequest(BaseModel):
    """Create an escalation path"""
    model_config = ConfigDict(extra="forbid")
    
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    steps: List[EscalationStep] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)
    is_active: bool = True
    is_default: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateEscalationPathRequest(BaseModel):
    """Partial update of an escalation path"""
    model_config = ConfigDict(extra="forbid")
    
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    steps: Optional[List[EscalationStep]] = None
    conditions: Optional[List[Condition]] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class WorkflowRuleFilters(BaseModel):
    """Filters for listing workflow rules"""
    type: Optional[RuleType] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class RoutingRuleFilters(BaseModel):
    """Filters for listing routing rules"""
    is_active: Optional[bool] = None
    search: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class WorkflowRuleList(BaseModel):
    """A page of workflow rules"""
    rules: List[WorkflowRule]
    total_count: int


class RoutingRuleList(BaseModel):
    """A page of routing rules"""
    rules: List[RoutingRule]
    total_count: int


class EscalationPathList(BaseModel):
    """Escalation paths of one tenant"""
    paths: List[EscalationPath]
    total_count: int


class WorkflowStatistics(BaseModel):
    """Rule and execution totals of one tenant"""
    total_workflows: int = 0
    active_workflows: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_duration_ms: float = 0.0
