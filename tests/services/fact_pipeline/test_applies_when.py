"""
AppliesWhen DSL Tests
=====================

Tests for predicate parsing, evaluation and specificity.

Version: 0.1.0
"""

import pytest

from services.fact_pipeline.dsl import (
    MAX_DEPTH,
    evaluate,
    parse_applies_when,
    specificity,
    to_dict,
    validate_applies_when,
)
from services.fact_pipeline.exceptions import DSLValidationError


OBRT_UNDER_LIMIT = {
    "op": "and",
    "args": [
        {"op": "cmp", "field": "entity.type", "cmp": "eq", "value": "OBRT"},
        {"op": "between", "field": "counters.revenueYtd", "gte": 0, "lte": 40000},
    ],
}


class TestParsing:
    """Tests for parse-time validation."""

    def test_parse_round_trip(self) -> None:
        """Test a valid predicate keeps its canonical form."""
        assert to_dict(parse_applies_when(OBRT_UNDER_LIMIT)) == OBRT_UNDER_LIMIT

    def test_parse_json_string(self) -> None:
        """Test predicates may arrive as JSON text."""
        assert validate_applies_when('{"op": "true"}') == (True, None)

    def test_between_without_bounds_rejected(self) -> None:
        """Test between needs at least one bound."""
        valid, error = validate_applies_when({"op": "between", "field": "counters.revenueYtd"})
        assert not valid
        assert "gte/lte" in error

    def test_between_inverted_bounds_rejected(self) -> None:
        """Test between bounds must be ordered."""
        with pytest.raises(DSLValidationError):
            parse_applies_when({"op": "between", "field": "x", "gte": 10, "lte": 1})

    def test_between_rejects_string_bounds(self) -> None:
        """Test bounds must be numeric."""
        assert not validate_applies_when({"op": "between", "field": "x", "gte": "10"})[0]

    @pytest.mark.parametrize(
        "raw",
        [
            {"op": "and", "args": []},
            {"op": "in", "field": "txn.paymentMethod", "values": []},
            {"op": "cmp", "field": "entity..type", "cmp": "eq", "value": 1},
            {"op": "cmp", "field": "entity.type", "cmp": "like", "value": 1},
            {"op": "exists", "field": "1entity"},
            {"op": "unknown"},
            {"op": "true", "extra": 1},
            [],
            "not json",
        ],
    )
    def test_invalid_shapes(self, raw: object) -> None:
        """Test arity, field paths, operators and shape are enforced."""
        with pytest.raises(DSLValidationError):
            parse_applies_when(raw)

    @pytest.mark.parametrize(
        "pattern",
        [
            "(a+)+$",
            "(\\w*\\s?)*",
            "(a|a)*",
            "((a+))+$",
            "((a|a))*",
            "(?:(a+))+",
            "(x(\\d+)?)*y",
            "[unclosed",
            "a" * 101,
        ],
    )
    def test_unsafe_patterns_rejected(self, pattern: str) -> None:
        """Test nested quantifiers, bad syntax and long patterns are rejected."""
        assert not validate_applies_when({"op": "matches", "field": "x", "pattern": pattern})[0]

    @pytest.mark.parametrize("pattern", ["^62", "(ab)+", "^(\\d{2})-(\\d+)$", "(?:HR)?\\d{11}", "[a-z]+(-[a-z]+)?"])
    def test_grouped_patterns_accepted(self, pattern: str) -> None:
        """Test groups without nested repetition pass the screen."""
        assert validate_applies_when({"op": "matches", "field": "x", "pattern": pattern}) == (True, None)

    def test_wrapped_nested_quantifier_never_runs(self) -> None:
        """Test extra grouping cannot smuggle a backtracking pattern into evaluation."""
        predicate = {"op": "matches", "field": "x", "pattern": "((a+))+$"}
        assert evaluate(predicate, {"x": "a" * 28 + "!"}) is False

    def test_depth_limit(self) -> None:
        """Test nesting beyond the maximum depth is rejected."""
        raw: dict = {"op": "true"}
        for _ in range(MAX_DEPTH):
            raw = {"op": "not", "arg": raw}
        with pytest.raises(DSLValidationError, match="depth"):
            parse_applies_when(raw)


class TestEvaluation:
    """Tests for the non-raising evaluator."""

    def test_nested_context(self) -> None:
        """Test dot paths resolve into nested mappings."""
        context = {"entity": {"type": "OBRT"}, "counters": {"revenueYtd": 39999.99}}
        assert evaluate(OBRT_UNDER_LIMIT, context)

    def test_flat_context(self) -> None:
        """Test flat dotted keys are accepted."""
        assert evaluate(OBRT_UNDER_LIMIT, {"entity.type": "OBRT", "counters.revenueYtd": 100})

    def test_between_is_inclusive(self) -> None:
        """Test between bounds are inclusive."""
        assert evaluate(OBRT_UNDER_LIMIT, {"entity.type": "OBRT", "counters.revenueYtd": 40000})
        assert not evaluate(OBRT_UNDER_LIMIT, {"entity.type": "OBRT", "counters.revenueYtd": 40000.01})

    def test_missing_field_is_false(self) -> None:
        """Test missing fields evaluate false, never raise."""
        assert not evaluate(OBRT_UNDER_LIMIT, {"entity": {"type": "OBRT"}})
        assert not evaluate({"op": "exists", "field": "entity.activityNkd"}, {})

    def test_ill_typed_comparison_is_false(self) -> None:
        """Test comparing a string with a number is false."""
        predicate = {"op": "cmp", "field": "counters.revenueYtd", "cmp": "gt", "value": 10}
        assert not evaluate(predicate, {"counters": {"revenueYtd": "lots"}})

    def test_decimal_equality(self) -> None:
        """Test numeric equality uses decimals."""
        predicate = {"op": "cmp", "field": "rate", "cmp": "eq", "value": 25}
        assert evaluate(predicate, {"rate": 25.0})
        assert not evaluate(predicate, {"rate": "25"})

    def test_bool_is_not_number(self) -> None:
        """Test True does not equal 1."""
        predicate = {"op": "cmp", "field": "flag", "cmp": "eq", "value": 1}
        assert not evaluate(predicate, {"flag": True})

    def test_in_and_not(self) -> None:
        """Test membership and negation."""
        predicate = {
            "op": "not",
            "arg": {"op": "in", "field": "txn.paymentMethod", "values": ["CASH", "CARD"]},
        }
        assert evaluate(predicate, {"txn": {"paymentMethod": "TRANSFER"}})
        assert not evaluate(predicate, {"txn": {"paymentMethod": "CASH"}})

    def test_matches(self) -> None:
        """Test regex matching on strings only."""
        predicate = {"op": "matches", "field": "entity.activityNkd", "pattern": "^62"}
        assert evaluate(predicate, {"entity": {"activityNkd": "62.01"}})
        assert not evaluate(predicate, {"entity": {"activityNkd": 6201}})

    def test_date_in_effect(self) -> None:
        """Test a date field on or before the check date."""
        predicate = {"op": "date_in_effect", "dateField": "txn.date", "on": "2025-01-01"}
        assert evaluate(predicate, {"txn": {"date": "2024-12-31"}})
        assert not evaluate(predicate, {"txn": {"date": "2025-01-02"}})

    def test_invalid_predicate_is_false(self) -> None:
        """Test an invalid predicate never evaluates to true."""
        assert not evaluate({"op": "between", "field": "x"}, {"x": 5})


class TestSpecificity:
    """Tests for lex specialis scoring."""

    def test_unconditional_is_least_specific(self) -> None:
        """Test true scores zero."""
        assert specificity({"op": "true"}) == 0

    def test_and_sums(self) -> None:
        """Test conjunctions are narrower than their parts."""
        assert specificity(OBRT_UNDER_LIMIT) == 2

    def test_or_takes_broadest_branch(self) -> None:
        """Test disjunctions are as broad as their broadest branch."""
        predicate = {"op": "or", "args": [OBRT_UNDER_LIMIT, {"op": "exists", "field": "x"}]}
        assert specificity(predicate) == 1
