"""Condition Evaluator - Safe evaluation of rule conditions"""
from typing import Any, Dict, Iterable, Optional

from ..domain.models import Condition
from ..domain.enums import ConditionOperator
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _is_number(value: Any) -> bool:
    """bool is an int subclass but never a number here"""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality without bool/number or string/number cross-matching"""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(
            _strict_equals(a, b) for a, b in zip(left, right)
        )
    if type(left) is not type(right):
        return False
    return left == right


def _as_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConditionEvaluator:
    """
    Evaluate rule conditions against a ticket snapshot
    
    Conditions are ANDed. The evaluator never raises: an unknown operator or
    an unexpected value shape evaluates to False. A missing field resolves to
    None, which fails every operator except not_equals.
    """
    
    def evaluate(
        self,
        conditions: Optional[Iterable[Condition]],
        snapshot: Dict[str, Any]
    ) -> bool:
        """
        Evaluate all conditions
        
        Args:
            conditions: Conditions of one rule
            snapshot: Ticket snapshot (nested dicts)
            
        Returns:
            True if every condition holds (always True for no conditions)
        """
        if not conditions:
            return True  # No conditions = always true
        
        for condition in conditions:
            if not self.evaluate_single(condition, snapshot):
                return False
        return True
    
    def evaluate_single(self, condition: Condition, snapshot: Dict[str, Any]) -> bool:
        """Evaluate a single condition"""
        try:
            field_value = self.get_field_value(condition.field, snapshot)
            return self._compare(field_value, condition.operator, condition.value)
        except Exception as e:
            logger.warning(f"Condition evaluation failed: {e}")
            return False  # Fail closed
    
    @staticmethod
    def get_field_value(field_path: str, snapshot: Dict[str, Any]) -> Any:
        """
        Get field value using dot notation
        
        Example: "custom_fields.region" -> snapshot["custom_fields"]["region"]
        """
        value: Any = snapshot
        for part in field_path.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                return None
        return value
    
    def _compare(self, field_value: Any, operator: Any, compare_value: Any) -> bool:
        """Compare values using operator"""
        try:
            op = ConditionOperator(operator)
        except ValueError:
            logger.debug(f"Unknown condition operator: {operator}")
            return False
        
        if field_value is None:
            return op == ConditionOperator.NOT_EQUALS
        
        if op == ConditionOperator.EQUALS:
            return _strict_equals(field_value, compare_value)
        
        elif op == ConditionOperator.NOT_EQUALS:
            return not _strict_equals(field_value, compare_value)
        
        elif op == ConditionOperator.GREATER_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a > b)
        
        elif op == ConditionOperator.GREATER_OR_EQUAL:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a >= b)
        
        elif op == ConditionOperator.LESS_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a < b)
        
        elif op == ConditionOperator.LESS_OR_EQUAL:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a <= b)
        
        elif op == ConditionOperator.IN:
            if not isinstance(compare_value, (list, tuple)):
                compare_value = [compare_value]
            return any(_strict_equals(field_value, v) for v in compare_value)
        
        elif op == ConditionOperator.CONTAINS:
            return _as_text(compare_value) in _as_text(field_value)
        
        elif op == ConditionOperator.BETWEEN:
            return self._between(field_value, compare_value)
        
        return False
    
    def _compare_numeric(self, field_value: Any, compare_value: Any, comparator) -> bool:
        """Compare numeric values; anything non-numeric is False"""
        if not (_is_number(field_value) and _is_number(compare_value)):
            return False
        return comparator(field_value, compare_value)
    
    def _between(self, field_value: Any, bounds: Any) -> bool:
        """Inclusive range check against a two-number pair"""
        if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
            return False
        low, high = bounds
        if not (_is_number(field_value) and _is_number(low) and _is_number(high)):
            return False
        return low <= field_value <= high
