"""Unit tests for expression evaluation semantics"""

import pytest
from datetime import date
from decimal import Decimal
from lending_insights.domain.exceptions import InvalidValueError
from lending_insights.domain.expressions import (
    AsNumber,
    Avg,
    Count,
    DatePart,
    DaysSince,
    EvalContext,
    LastSegment,
    Max,
    Not,
    ParseDate,
    Round,
    Sum,
    and_,
    between,
    case,
    col,
    conjuncts,
    div,
    eq,
    gt,
    in_,
    lit,
    lt,
    mul,
    or_,
    param,
)

TODAY = date(2025, 6, 30)


def ctx(row=None, params=None, group=None) -> EvalContext:
    return EvalContext(row or {}, params or {}, TODAY, group=group)


def test_comparison_with_null_is_null():
    """Test SQL three-valued comparison"""
    amount = col("loan", "loan_amount")
    assert gt(amount, lit(5)).evaluate(ctx({"loan.loan_amount": None})) is None
    assert gt(amount, lit(5)).evaluate(ctx({"loan.loan_amount": 10})) is True


def test_boolean_logic_three_valued():
    """Test AND/OR/NOT with NULL operands"""
    null = eq(lit(None), lit(1))
    assert and_(null, lit(False)).evaluate(ctx()) is False
    assert and_(null, lit(True)).evaluate(ctx()) is None
    assert or_(null, lit(True)).evaluate(ctx()) is True
    assert or_(null, lit(False)).evaluate(ctx()) is None
    assert Not(null).evaluate(ctx()) is None


def test_between_is_inclusive():
    """Test BETWEEN includes both bounds"""
    age = col("customer", "age")
    assert between(age, 25, 34).evaluate(ctx({"customer.age": 25})) is True
    assert between(age, 25, 34).evaluate(ctx({"customer.age": 34})) is True
    assert between(age, 25, 34).evaluate(ctx({"customer.age": 35})) is False


def test_case_first_match_wins_and_null_falls_through():
    """Test searched CASE priority and ELSE branch"""
    age = col("customer", "age")
    bucket = case((lt(age, lit(25)), "<25"), (lt(age, lit(100)), "<100"), default="other")
    assert bucket.evaluate(ctx({"customer.age": 20})) == "<25"
    assert bucket.evaluate(ctx({"customer.age": 60})) == "<100"
    assert bucket.evaluate(ctx({"customer.age": None})) == "other"


def test_division_is_decimal_and_null_on_zero():
    """Test ratio arithmetic"""
    ratio = mul(div(lit(Decimal("40.00")), lit(Decimal("100.00"))), lit(100))
    assert ratio.evaluate(ctx()) == Decimal("40")
    assert div(lit(1), lit(0)).evaluate(ctx()) is None
    assert div(lit(1), lit(None)).evaluate(ctx()) is None


def test_parameter_lookup():
    """Test parameters resolve from the bound mapping"""
    assert param("top_n").evaluate(ctx(params={"top_n": 3})) == 3
    assert param("top_n").evaluate(ctx()) is None


def test_in_list():
    """Test IN membership with NULL"""
    kind = col("transaction", "transaction_type")
    expr = in_(kind, "EMI Payment", "Prepayment")
    assert expr.evaluate(ctx({"transaction.transaction_type": "Prepayment"})) is True
    assert expr.evaluate(ctx({"transaction.transaction_type": "Fee"})) is False
    assert expr.evaluate(ctx({})) is None


def test_round_half_away_from_zero():
    """Test rounding matches SQL ROUND on exact decimals"""
    assert Round(lit(Decimal("2.345")), 2).evaluate(ctx()) == Decimal("2.35")
    assert Round(lit(Decimal("-2.345")), 2).evaluate(ctx()) == Decimal("-2.35")
    assert Round(lit(Decimal("9333.5")), 0).evaluate(ctx()) == Decimal("9334")
    assert Round(lit(None), 2).evaluate(ctx()) is None


def test_last_segment_keeps_leading_space():
    """Test region extraction from address text"""
    address = col("customer", "address")
    assert LastSegment(address).evaluate(ctx({"customer.address": "1 Main St, Austin, TX"})) == " TX"
    assert LastSegment(address).evaluate(ctx({"customer.address": "Nowhere"})) == "Nowhere"


def test_parse_date_and_parts():
    """Test MM/DD/YYYY parsing and year/month extraction"""
    parsed = ParseDate(col("transaction", "transaction_date"))
    row = {"transaction.transaction_date": "02/15/2024"}
    assert parsed.evaluate(ctx(row)) == date(2024, 2, 15)
    assert DatePart("year", parsed).evaluate(ctx(row)) == 2024
    assert DatePart("month", parsed).evaluate(ctx(row)) == 2


def test_parse_date_malformed_raises():
    """Test malformed date text is reported, not nulled"""
    parsed = ParseDate(col("transaction", "transaction_date"))
    with pytest.raises(InvalidValueError) as exc_info:
        parsed.evaluate(ctx({"transaction.transaction_date": "2024-02-15"}))
    assert exc_info.value.column == "transaction.transaction_date"
    assert exc_info.value.value == "2024-02-15"


def test_days_since_uses_context_date():
    """Test day difference against the evaluation date"""
    since = DaysSince(ParseDate(col("customer", "customer_since")))
    assert since.evaluate(ctx({"customer.customer_since": "06/29/2025"})) == 1
    assert since.evaluate(ctx({"customer.customer_since": None})) is None


def test_aggregates_skip_nulls():
    """Test COUNT/SUM/AVG/MAX NULL handling"""
    amount = col("loan", "loan_amount")
    group = [{"loan.loan_amount": Decimal("10")}, {"loan.loan_amount": None}, {"loan.loan_amount": Decimal("20")}]
    scope = ctx(group=group)
    assert Count().evaluate(scope) == 3
    assert Count(amount).evaluate(scope) == 2
    assert Sum(amount).evaluate(scope) == Decimal("30")
    assert Avg(amount).evaluate(scope) == Decimal("15")
    assert Max(amount).evaluate(scope) == Decimal("20")

    empty = ctx(group=[{"loan.loan_amount": None}])
    assert Sum(amount).evaluate(empty) is None
    assert Avg(amount).evaluate(empty) is None


def test_average_of_predicate_is_proportion():
    """Test AVG over a predicate yields a share in [0, 1]"""
    risk = col("loan", "default_risk")
    group = [{"loan.default_risk": "Low"}, {"loan.default_risk": "High"}, {"loan.default_risk": "Low"}]
    score = Round(Avg(AsNumber(eq(risk, lit("Low")))), 2)
    assert score.evaluate(ctx(group=group)) == Decimal("0.67")


def test_aggregate_outside_group_raises():
    """Test aggregates require a group scope"""
    with pytest.raises(TypeError):
        Count().evaluate(ctx())


def test_sql_native_flags():
    """Test which nodes may be pushed down to SQL"""
    amount = col("transaction", "transaction_amount")
    assert gt(mul(amount, lit(100)), param("threshold")).sql_compilable() is True
    assert gt(div(amount, lit(100)), lit(1)).sql_compilable() is False
    assert gt(DaysSince(ParseDate(col("customer", "customer_since"))), lit(1)).sql_compilable() is False


def test_conjuncts_flatten_nested_and():
    """Test WHERE splitting into conjuncts"""
    a, b, c = eq(lit(1), lit(1)), eq(lit(2), lit(2)), eq(lit(3), lit(3))
    assert conjuncts(and_(a, and_(b, c))) == [a, b, c]
    assert conjuncts(None) == []
