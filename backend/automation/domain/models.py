"""Domain Models - Pydantic schemas for all entities"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union
from pydantic import BaseModel, Field, ConfigDict, StrictBool, StrictFloat, StrictInt, StrictStr

from .enums import RuleType, ExecutionStatus, ScheduleState, RunStatus, AssignTargetType
from ..utils.time import utc_now


# ============================================================================
# Tagged value types
# ============================================================================

# Smart-mode unions pick the exact type, so True never becomes 1 and
# "5" never becomes 5.
NumberValue = Union[StrictInt, StrictFloat]
NumberPair = Tuple[NumberValue, NumberValue]
ConditionValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, List[StrictStr], NumberPair]
ParameterValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, List[StrictStr]]


# ============================================================================
# Ticket (external entity)
# ============================================================================

class Ticket(BaseModel):
    """Support ticket as read from the ticket store; unknown fields are kept"""
    model_config = ConfigDict(extra="allow")
    
    ticket_id: str = Field(..., description="Ticket ID")
    tenant_id: str = Field(..., description="Owning tenant")
    subject: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: str = "open"
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    assigned_agent_id: Optional[str] = None
    assigned_team_id: Optional[str] = None
    customer_id: Optional[str] = None
    channel_id: Optional[str] = None
    escalation_level: int = Field(default=0, description="Highest escalation step applied")
    unresolved_since: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    
    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time view used for condition evaluation"""
        return self.model_dump()


# ============================================================================
# Condition & Action
# ============================================================================

class Condition(BaseModel):
    """Single predicate over a dot-notation field path"""
    model_config = ConfigDict(extra="forbid", frozen=True)
    
    field: str = Field(..., description="Dot-notation path into the ticket snapshot")
    operator: str = Field(..., description="Comparison operator")
    value: ConditionValue = Field(..., description="Value to compare against")


class Action(BaseModel):
    """Ticket mutation performed when a rule matches"""
    model_config = ConfigDict(extra="forbid", frozen=True)
    
    type: str = Field(..., description="Action type")
    parameters: Dict[str, ParameterValue] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """Outcome of one action"""
    action_type: str
    success: bool
    error: Optional[str] = None
    applied_at: datetime = Field(default_factory=utc_now)
    details: Dict[str, Any] = Field(default_factory=dict)


class DispatchResult(BaseModel):
    """Best-effort notification dispatch outcome"""
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


# ============================================================================
# Schedule
# ============================================================================

class RuleSchedule(BaseModel):
    """Recurrence definition plus run state for a scheduled workflow rule"""
    model_config = ConfigDict(extra="ignore")
    
    frequency: str = Field(..., description="daily, weekly, monthly or quarterly")
    day_of_week: Optional[int] = Field(None, description="0=Sunday .. 6=Saturday")
    day_of_month: Optional[int] = Field(None, description="1..31")
    time: str = Field(..., description="HH:MM wall-clock time")
    timezone: str = Field(default="UTC", description="IANA timezone name")
    is_active: bool = True
    state: ScheduleState = ScheduleState.SCHEDULED
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_status: Optional[RunStatus] = None
    last_error: Optional[str] = None
    run_count: int = 0
    claimed_at: Optional[datetime] = Field(None, description="When the current run claimed the schedule")


# ============================================================================
# Rules
# ============================================================================

class WorkflowRule(BaseModel):
    """Multi-trigger, multi-match automation rule"""
    model_config = ConfigDict(extra="ignore")
    
    rule_id: str = Field(..., description="Rule ID")
    tenant_id: str
    name: str
    description: Optional[str] = None
    type: RuleType = RuleType.CUSTOM
    priority: int = Field(default=0, description="Higher runs first")
    is_active: bool = True
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    triggers: List[str] = Field(default_factory=list, description="Event names, 'prefix.*' or '*'")
    schedule: Optional[RuleSchedule] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    execution_count: int = 0
    last_executed: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class RoutingRule(BaseModel):
    """Single-winner routing rule"""
    model_config = ConfigDict(extra="ignore")
    
    rule_id: str = Field(..., description="Rule ID")
    tenant_id: str
    name: str
    description: Optional[str] = None
    priority: int = 0
    is_active: bool = True
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    match_count: int = 0
    last_matched: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class RoutingOutcome(BaseModel):
    """Result of routing a ticket"""
    ticket_id: str
    rule_id: str
    rule_name: str
    results: List[ActionResult] = Field(default_factory=list)


# ============================================================================
# Escalation
# ============================================================================

class AssignTarget(BaseModel):
    """Who an escalation step reassigns the ticket to"""
    model_config = ConfigDict(extra="forbid")
    
    type: AssignTargetType
    id: str


class EscalationNotification(BaseModel):
    """Notification sent when an escalation step fires"""
    model_config = ConfigDict(extra="ignore")
    
    channel: str = Field(default="email")
    recipients: List[str] = Field(default_factory=list)
    template: Optional[str] = None


class EscalationStep(BaseModel):
    """One timed escalation step"""
    model_config = ConfigDict(extra="ignore")
    
    level: int = Field(..., description="1-based step level")
    delay_minutes: int = Field(..., description="Minutes after the previous step")
    assign_to: Optional[AssignTarget] = None
    notifications: List[EscalationNotification] = Field(default_factory=list)


class EscalationPath(BaseModel):
    """Ordered escalation steps gated by conditions"""
    model_config = ConfigDict(extra="ignore")
    
    path_id: str
    tenant_id: str
    name: str
    description: Optional[str] = None
    steps: List[EscalationStep] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)
    is_active: bool = True
    is_default: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    
    def ordered_steps(self) -> List[EscalationStep]:
        """Steps in level order"""
        return sorted(self.steps, key=lambda s: s.level)


class EscalationOutcome(BaseModel):
    """Result of one escalation pass over a ticket"""
    ticket_id: str
    path_id: str
    applied_levels: List[int] = Field(default_factory=list)
    results: List[ActionResult] = Field(default_factory=list)


# ============================================================================
# Execution history
# ============================================================================

class WorkflowExecution(BaseModel):
    """Audit record of one rule applied to one ticket"""
    model_config = ConfigDict(extra="ignore")
    
    execution_id: str
    workflow_id: str
    ticket_id: str
    tenant_id: str
    triggered_by: str = "system"
    trigger_event: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    input: Dict[str, Any] = Field(default_factory=dict)
    output: List[ActionResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
