"""Tests for ConditionEvaluator"""
import pytest

from automation.domain.models import Condition
from automation.engine.condition_evaluator import ConditionEvaluator


def cond(field, operator, value):
    return Condition(field=field, operator=operator, value=value)


@pytest.fixture
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


@pytest.fixture
def snapshot():
    return {
        "ticket_id": "TKT-1",
        "priority": "high",
        "status": "open",
        "tags": ["vip", "billing"],
        "escalation_level": 0,
        "custom_fields": {"region": "emea", "order_total": 250, "is_partner": True, "score": 4.5},
    }


class TestEvaluateCombination:
    """AND semantics and empty condition lists"""

    def test_no_conditions_is_true(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([], snapshot) is True
        assert evaluator.evaluate(None, {}) is True

    def test_all_conditions_must_hold(self, evaluator, snapshot) -> None:
        conditions = [
            cond("priority", "equals", "high"),
            cond("custom_fields.region", "equals", "emea"),
        ]
        assert evaluator.evaluate(conditions, snapshot) is True

    def test_one_failing_condition_fails_rule(self, evaluator, snapshot) -> None:
        conditions = [
            cond("priority", "equals", "high"),
            cond("status", "equals", "closed"),
        ]
        assert evaluator.evaluate(conditions, snapshot) is False


class TestFieldPaths:
    """Dot-notation lookup"""

    def test_nested_path(self, snapshot) -> None:
        assert ConditionEvaluator.get_field_value("custom_fields.region", snapshot) == "emea"

    def test_missing_segment_is_none(self, snapshot) -> None:
        assert ConditionEvaluator.get_field_value("custom_fields.missing.deeper", snapshot) is None
        assert ConditionEvaluator.get_field_value("priority.level", snapshot) is None


class TestEquality:
    """equals / not_equals"""

    def test_string_equality(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([cond("priority", "equals", "high")], snapshot)
        assert not evaluator.evaluate([cond("priority", "not_equals", "high")], snapshot)

    def test_no_bool_number_cross_equality(self, evaluator) -> None:
        snap = {"flag": 1, "count": True}
        assert not evaluator.evaluate([cond("flag", "equals", True)], snap)
        assert not evaluator.evaluate([cond("count", "equals", 1)], snap)

    def test_no_string_number_coercion(self, evaluator) -> None:
        snap = {"amount": 5, "code": "5"}
        assert not evaluator.evaluate([cond("amount", "equals", "5")], snap)
        assert not evaluator.evaluate([cond("code", "equals", 5)], snap)

    def test_int_and_float_compare_by_value(self, evaluator) -> None:
        assert evaluator.evaluate([cond("amount", "equals", 5.0)], {"amount": 5})

    @pytest.mark.parametrize("value", ["high", "low", 3, 2.5, True, False, ["vip"]])
    def test_equals_and_not_equals_are_complementary(self, evaluator, snapshot, value) -> None:
        for field in ("priority", "escalation_level", "custom_fields.is_partner", "tags"):
            eq = evaluator.evaluate([cond(field, "equals", value)], snapshot)
            ne = evaluator.evaluate([cond(field, "not_equals", value)], snapshot)
            assert eq != ne

    def test_list_field_equality(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([cond("tags", "equals", ["vip", "billing"])], snapshot)


class TestNullField:
    """A missing field fails every operator except not_equals"""

    @pytest.mark.parametrize("operator,value", [
        ("equals", "x"),
        ("greater_than", 1),
        ("greater_or_equal", 1),
        ("less_than", 1),
        ("less_or_equal", 1),
        ("in", ["x"]),
        ("contains", "x"),
        ("between", (1, 2)),
    ])
    def test_missing_field_fails(self, evaluator, operator, value) -> None:
        assert evaluator.evaluate([cond("nope", operator, value)], {}) is False

    def test_missing_field_not_equals_is_true(self, evaluator) -> None:
        assert evaluator.evaluate([cond("nope", "not_equals", "x")], {}) is True


class TestNumericOperators:
    """greater/less comparisons and between"""

    def test_comparisons(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([cond("custom_fields.order_total", "greater_than", 100)], snapshot)
        assert evaluator.evaluate([cond("custom_fields.order_total", "greater_or_equal", 250)], snapshot)
        assert evaluator.evaluate([cond("custom_fields.order_total", "less_than", 250.5)], snapshot)
        assert evaluator.evaluate([cond("custom_fields.order_total", "less_or_equal", 250)], snapshot)
        assert not evaluator.evaluate([cond("custom_fields.order_total", "less_than", 250)], snapshot)

    def test_non_numeric_operands_are_false(self, evaluator) -> None:
        snap = {"text": "300", "flag": True}
        assert not evaluator.evaluate([cond("text", "greater_than", 100)], snap)
        assert not evaluator.evaluate([cond("flag", "greater_than", 0)], snap)

    def test_between_is_inclusive(self, evaluator) -> None:
        for amount in (10, 15, 20):
            assert evaluator.evaluate([cond("amount", "between", (10, 20))], {"amount": amount})
        assert not evaluator.evaluate([cond("amount", "between", (10, 20))], {"amount": 20.01})
        assert not evaluator.evaluate([cond("amount", "between", (10, 20))], {"amount": 9})

    def test_between_non_numeric_field_is_false(self, evaluator) -> None:
        assert not evaluator.evaluate([cond("amount", "between", (10, 20))], {"amount": "15"})


class TestMembershipAndText:
    """in / contains"""

    def test_in(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([cond("priority", "in", ["high", "urgent"])], snapshot)
        assert not evaluator.evaluate([cond("priority", "in", ["low"])], snapshot)

    def test_contains_is_case_sensitive(self, evaluator) -> None:
        snap = {"subject": "Refund request for order 42"}
        assert evaluator.evaluate([cond("subject", "contains", "Refund")], snap)
        assert not evaluator.evaluate([cond("subject", "contains", "refund request for ORDER")], snap)

    def test_contains_on_list_field(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([cond("tags", "contains", "vip")], snapshot)

    def test_contains_on_number_field(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([cond("custom_fields.order_total", "contains", "25")], snapshot)


class TestUnknownOperator:
    """Operators outside the supported set never raise"""

    def test_unknown_operator_is_false(self, evaluator, snapshot) -> None:
        assert evaluator.evaluate([cond("priority", "matches_regex", "h.*")], snapshot) is False
