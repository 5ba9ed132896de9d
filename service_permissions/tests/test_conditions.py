"""
Unit tests for condition evaluation.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from service_permissions.app.rules.conditions import (
    ConditionEvaluator, resolve_path, strict_equals
)
from service_permissions.app.rules.models import (
    Condition, ConditionOperator, ConditionResult, EnvironmentContext,
    LogicalOperator, PermissionContext
)


def _result(value, logical_operator=None):
    condition = Condition("f", ConditionOperator.EQ, value, logical_operator)
    return ConditionResult(condition=condition, result=value, reason=f"reason {value}")


class TestResolvePath:
    """Test cases for dotted path resolution."""

    @pytest.fixture
    def context(self):
        return PermissionContext(
            user_id="u1",
            resource={"owner": {"id": "u1"}, "tags": [{"name": "a"}, {"name": "b"}]},
            environment=EnvironmentContext(ip="10.0.0.1", location={"country": "KE"}),
            metadata={"team_id": "T1"}
        )

    def test_nested_mapping(self, context):
        assert resolve_path(context, "resource.owner.id") == "u1"

    def test_dataclass_fields(self, context):
        assert resolve_path(context, "environment.location.country") == "KE"
        assert resolve_path(context, "environment.ip") == "10.0.0.1"

    def test_indexed_segment(self, context):
        assert resolve_path(context, "resource.tags[1].name") == "b"

    def test_index_out_of_range(self, context):
        assert resolve_path(context, "resource.tags[5].name") is None

    def test_missing_segment(self, context):
        assert resolve_path(context, "resource.missing.id") is None
        assert resolve_path(context, "nope") is None

    def test_empty_path(self, context):
        assert resolve_path(context, "") is None

    def test_plain_mapping_source(self):
        assert resolve_path({"a": {"b": 3}}, "a.b") == 3

    def test_camel_case_field_names(self):
        context = PermissionContext.from_dict({
            "userId": "u1",
            "environment": {"ipAddress": "10.0.0.9"}
        })

        assert resolve_path(context, "userId") == "u1"
        assert resolve_path(context, "user_id") == "u1"
        assert resolve_path(context, "environment.ipAddress") == "10.0.0.9"
        assert resolve_path(context, "environment.ip_address") == "10.0.0.9"

    def test_top_level_extras_resolve_through_metadata(self):
        context = PermissionContext.from_dict({"department": "sales", "team": {"id": "T1"}})

        assert resolve_path(context, "department") == "sales"
        assert resolve_path(context, "team.id") == "T1"
        assert resolve_path(context, "metadata.department") == "sales"

    def test_metadata_lookup_only_on_context_root(self, context):
        assert resolve_path(context, "team_id") == "T1"
        assert resolve_path(context, "environment.team_id") is None


class TestStrictEquals:
    """Test cases for type-strict equality."""

    def test_same_values(self):
        assert strict_equals("a", "a")
        assert strict_equals(1, 1.0)
        assert strict_equals(None, None)

    def test_different_kinds(self):
        assert not strict_equals("1", 1)
        assert not strict_equals(True, 1)
        assert not strict_equals(None, "")

    def test_structural(self):
        assert strict_equals({"a": [1, 2]}, {"a": [1, 2]})
        assert not strict_equals({"a": [1, 2]}, {"a": [2, 1]})
        assert not strict_equals([1], [1, 2])


class TestConditionEvaluator:
    """Test cases for ConditionEvaluator."""

    @pytest.fixture
    def evaluator(self):
        return ConditionEvaluator(logger=MagicMock())

    @pytest.fixture
    def context(self):
        return PermissionContext(
            user_id="u1",
            resource={"status": "draft", "size": 10, "name": "Quarterly Report", "tags": ["a", "b"]},
            environment=EnvironmentContext(ip="10.0.0.1", location={"country": "KE"}),
        )

    @pytest.mark.parametrize("operator,actual,expected,outcome", [
        (ConditionOperator.EQ, "draft", "draft", True),
        (ConditionOperator.EQ, "1", 1, False),
        (ConditionOperator.NE, "draft", "published", True),
        (ConditionOperator.NE, None, None, False),
        (ConditionOperator.IN, "b", ["a", "b"], True),
        (ConditionOperator.IN, "c", ["a", "b"], False),
        (ConditionOperator.IN, "a", "abc", False),
        (ConditionOperator.NIN, "c", ["a", "b"], True),
        (ConditionOperator.NIN, "a", ["a", "b"], False),
        (ConditionOperator.NIN, "a", "not-a-list", False),
        (ConditionOperator.GT, 10, 5, True),
        (ConditionOperator.GT, "10", 5, True),
        (ConditionOperator.GT, "ten", 5, False),
        (ConditionOperator.GT, True, 0, False),
        (ConditionOperator.GTE, 5, 5, True),
        (ConditionOperator.LT, 4, 5, True),
        (ConditionOperator.LT, None, 5, False),
        (ConditionOperator.LTE, 5.0, 5, True),
        (ConditionOperator.CONTAINS, "Quarterly Report", "REPORT", True),
        (ConditionOperator.CONTAINS, ["a", "b"], "b", True),
        (ConditionOperator.CONTAINS, None, "a", False),
        (ConditionOperator.STARTS_WITH, "Quarterly", "Quart", True),
        (ConditionOperator.STARTS_WITH, "Quarterly", "quart", False),
        (ConditionOperator.ENDS_WITH, "report.pdf", ".pdf", True),
        (ConditionOperator.ENDS_WITH, True, "ue", True),
        (ConditionOperator.REGEX, "user@example.com", r"^[a-z]+@EXAMPLE\.com$", True),
        (ConditionOperator.REGEX, "user@other.com", r"example", False),
    ])
    def test_compare_values(self, evaluator, operator, actual, expected, outcome):
        """Operator table."""
        assert evaluator.compare_values(actual, operator, expected) is outcome

    def test_datetime_comparison(self, evaluator):
        earlier = datetime(2024, 1, 1, tzinfo=timezone.utc)
        later = datetime(2024, 6, 1, tzinfo=timezone.utc)

        assert evaluator.compare_values(later, ConditionOperator.GT, earlier) is True
        assert evaluator.compare_values(earlier, ConditionOperator.GTE, later) is False

    def test_invalid_regex_is_false(self, evaluator):
        assert evaluator.compare_values("abc", ConditionOperator.REGEX, "([a-z") is False
        evaluator.logger.warning.assert_called()

    def test_unknown_operator_is_false(self, evaluator, context):
        condition = Condition("resource.status", "approx", "draft")

        assert condition.operator == "approx"
        result = evaluator.evaluate_condition(condition, context)

        assert result.result is False
        evaluator.logger.warning.assert_called()

    def test_operator_case_insensitive(self):
        assert Condition("f", "STARTS_WITH", "x").operator == ConditionOperator.STARTS_WITH

    def test_evaluate_condition_reports_actual_value(self, evaluator, context):
        condition = Condition("resource.status", ConditionOperator.EQ, "published")

        result = evaluator.evaluate_condition(condition, context)

        assert result.result is False
        assert result.actual_value == "draft"
        assert "Condition not met" in result.reason

    def test_evaluate_condition_never_raises(self, evaluator, context):
        evaluator.compare_values = MagicMock(side_effect=RuntimeError("boom"))

        result = evaluator.evaluate_condition(Condition("resource.status", ConditionOperator.EQ, "x"), context)

        assert result.result is False
        assert "boom" in result.reason

    def test_empty_conditions_pass(self, evaluator, context):
        granted, results = evaluator.evaluate([], context)

        assert granted is True
        assert results == []

    def test_evaluate_folds_in_order(self, evaluator, context):
        conditions = [
            Condition("environment.location.country", ConditionOperator.EQ, "UG"),
            Condition("environment.location.country", ConditionOperator.EQ, "KE", LogicalOperator.OR),
            Condition("resource.size", ConditionOperator.GT, 5),
        ]

        granted, results = evaluator.evaluate(conditions, context)

        assert granted is True
        assert [r.result for r in results] == [False, True, True]


class TestCombine:
    """Test cases for the positional fold."""

    def test_single_condition_ignores_operator(self):
        assert ConditionEvaluator.combine([_result(True, LogicalOperator.NOT)]) is True
        assert ConditionEvaluator.combine([_result(False, LogicalOperator.OR)]) is False

    def test_and(self):
        assert ConditionEvaluator.combine([_result(True), _result(True)]) is True
        assert ConditionEvaluator.combine([_result(True), _result(False)]) is False

    def test_or_restores(self):
        assert ConditionEvaluator.combine([_result(False), _result(True, LogicalOperator.OR)]) is True

    def test_not_negates(self):
        assert ConditionEvaluator.combine([_result(True), _result(True, LogicalOperator.NOT)]) is False
        assert ConditionEvaluator.combine([_result(True), _result(False, LogicalOperator.NOT)]) is True

    def test_first_condition_operator_applies_to_true_seed(self):
        # NOT on the first of several conditions negates it against the seed
        assert ConditionEvaluator.combine([_result(True, LogicalOperator.NOT), _result(True)]) is False
        assert ConditionEvaluator.combine([_result(False, LogicalOperator.OR), _result(True)]) is True

    def test_unknown_logical_operator_folds_as_and(self):
        assert ConditionEvaluator.combine([_result(True), _result(False, "xor")]) is False

    def test_explain_failure(self):
        results = [_result(True), _result(False), _result(True)]

        assert ConditionEvaluator.explain_failure(results) == "reason False"

    def test_explain_failure_for_negation(self):
        results = [_result(True), _result(True, LogicalOperator.NOT)]

        assert ConditionEvaluator.explain_failure(results).startswith("Negated condition matched: f eq")

    def test_explain_failure_when_granted(self):
        results = [_result(False), _result(True, LogicalOperator.OR)]

        assert ConditionEvaluator.explain_failure(results) is None
