"""Rule Validator - Creation-time validation of conditions, actions, schedules and paths"""
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..domain.models import Action, Condition, EscalationStep
from ..domain.enums import ActionType, ConditionOperator, ScheduleFrequency
from ..domain.errors import (
    InvalidActionError, InvalidConditionError, InvalidEscalationPathError, SchedulingError,
    ValidationError
)
from ..utils.time import get_zone

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

NUMERIC_OPERATORS = {
    ConditionOperator.GREATER_THAN,
    ConditionOperator.GREATER_OR_EQUAL,
    ConditionOperator.LESS_THAN,
    ConditionOperator.LESS_OR_EQUAL,
}

# Required string parameters per action type
REQUIRED_PARAMETERS: Dict[ActionType, Sequence[str]] = {
    ActionType.ASSIGN_TO_USER: ("user_id",),
    ActionType.ASSIGN_TO_TEAM: ("team_id",),
    ActionType.SET_PRIORITY: ("priority",),
    ActionType.SET_STATUS: ("status",),
    ActionType.ADD_TAG: ("tag",),
    ActionType.REMOVE_TAG: ("tag",),
    ActionType.SEND_NOTIFICATION: ("channel", "template"),
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RuleValidator:
    """
    Validate rule definitions before they are stored
    
    Evaluation never validates; everything outside the supported operator
    and action set is rejected here instead.
    """
    
    def validate_conditions(self, conditions: Iterable[Condition]) -> None:
        """Raise InvalidConditionError on the first bad condition"""
        for index, condition in enumerate(conditions):
            details = {"index": index, "field": condition.field, "operator": condition.operator}
            
            if not condition.field or not condition.field.strip():
                raise InvalidConditionError("Condition field is required", details=details)
            
            try:
                operator = ConditionOperator(condition.operator)
            except ValueError:
                raise InvalidConditionError(
                    f"Unsupported condition operator: {condition.operator}",
                    details={**details, "allowed": [op.value for op in ConditionOperator]}
                )
            
            value = condition.value
            if operator in NUMERIC_OPERATORS and not _is_number(value):
                raise InvalidConditionError(
                    f"Operator {operator.value} requires a numeric value", details=details
                )
            if operator == ConditionOperator.IN and not isinstance(value, list):
                raise InvalidConditionError(
                    "Operator in requires an array of strings", details=details
                )
            if operator == ConditionOperator.BETWEEN:
                if not isinstance(value, tuple):
                    raise InvalidConditionError(
                        "Operator between requires a [low, high] number pair", details=details
                    )
                if value[0] > value[1]:
                    raise InvalidConditionError(
                        "Operator between requires low <= high", details=details
                    )
            if operator == ConditionOperator.CONTAINS and not isinstance(value, str):
                raise InvalidConditionError(
                    "Operator contains requires a string value", details=details
                )
            if operator in (ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS) and isinstance(value, tuple):
                raise InvalidConditionError(
                    f"Operator {operator.value} does not accept a number pair", details=details
                )
    
    def validate_actions(self, actions: Iterable[Action], require_one: bool = False) -> None:
        """Raise InvalidActionError on the first bad action"""
        actions = list(actions)
        if require_one and not actions:
            raise InvalidActionError("At least one action is required")
        
        for index, action in enumerate(actions):
            details = {"index": index, "type": action.type}
            try:
                action_type = ActionType(action.type)
            except ValueError:
                raise InvalidActionError(
                    f"Unsupported action type: {action.type}",
                    details={**details, "allowed": [t.value for t in ActionType]}
                )
            
            for name in REQUIRED_PARAMETERS[action_type]:
                value = action.parameters.get(name)
                if not isinstance(value, str) or not value.strip():
                    raise InvalidActionError(
                        f"Action {action_type.value} requires parameter '{name}'",
                        details={**details, "parameter": name}
                    )
            
            if action_type == ActionType.SEND_NOTIFICATION:
                recipients = action.parameters.get("recipients")
                if not isinstance(recipients, list) or not recipients:
                    raise InvalidActionError(
                        "Action send_notification requires a non-empty 'recipients' list",
                        details={**details, "parameter": "recipients"}
                    )
    
    def validate_triggers(self, triggers: Iterable[str]) -> None:
        """Trigger names must be non-empty"""
        for trigger in triggers:
            if not isinstance(trigger, str) or not trigger.strip():
                raise ValidationError("Trigger event names must be non-empty strings")
    
    def validate_schedule(
        self,
        frequency: str,
        time: str,
        timezone: str,
        day_of_week: Optional[int] = None,
        day_of_month: Optional[int] = None
    ) -> ScheduleFrequency:
        """
        Validate recurrence fields
        
        Returns:
            The parsed frequency
            
        Raises:
            SchedulingError: On malformed time, unknown zone, unsupported frequency
                or missing/out-of-range day fields
        """
        try:
            parsed = ScheduleFrequency(frequency)
        except ValueError:
            raise SchedulingError(
                f"Unsupported frequency: {frequency}",
                details={"allowed": [f.value for f in ScheduleFrequency]}
            )
        
        if not isinstance(time, str) or not TIME_PATTERN.match(time):
            raise SchedulingError(f"Malformed time '{time}', expected HH:MM", details={"time": time})
        
        if get_zone(timezone) is None:
            raise SchedulingError(f"Unknown timezone: {timezone}", details={"timezone": timezone})
        
        if parsed == ScheduleFrequency.WEEKLY:
            if day_of_week is None or not 0 <= day_of_week <= 6:
                raise SchedulingError(
                    "Weekly schedules require day_of_week between 0 (Sunday) and 6",
                    details={"day_of_week": day_of_week}
                )
        
        if parsed == ScheduleFrequency.MONTHLY:
            if day_of_month is None or not 1 <= day_of_month <= 31:
                raise SchedulingError(
                    "Monthly schedules require day_of_month between 1 and 31",
                    details={"day_of_month": day_of_month}
                )
        
        return parsed
    
    def validate_escalation_steps(self, steps: List[EscalationStep]) -> None:
        """Levels are unique positive integers, delays are non-negative"""
        seen = set()
        for step in steps:
            details = {"level": step.level}
            if step.level < 1:
                raise InvalidEscalationPathError("Step level must be >= 1", details=details)
            if step.level in seen:
                raise InvalidEscalationPathError(f"Duplicate step level {step.level}", details=details)
            seen.add(step.level)
            
            if step.delay_minutes < 0:
                raise InvalidEscalationPathError("Step delay_minutes must be >= 0", details=details)
            
            for notification in step.notifications:
                if not notification.recipients:
                    raise InvalidEscalationPathError(
                        "Escalation notifications require at least one recipient", details=details
                    )
