"""Declarative expression tree for analytical query definitions.

Every node evaluates in-process against an EvalContext. Row-level nodes that
map one-to-one onto SQL (columns, literals, parameters, comparisons, boolean
logic, IN/BETWEEN, + - *) are marked sql_native so stores can push WHERE
conjuncts built only from them down to the database.

NULL handling follows SQL: comparisons against None yield None, WHERE/HAVING
keep a row only when the predicate is True, aggregates skip None.
"""

import operator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from lending_insights.domain.exceptions import InvalidValueError
from lending_insights.utils.date_utils import STORED_DATE_FORMAT, days_between, parse_stored_date


class EvalContext:
    """Evaluation scope: one joined row, or one group of rows plus projected values"""

    __slots__ = ("row", "params", "today", "values", "group")

    def __init__(
        self,
        row: Mapping[str, Any],
        params: Mapping[str, Any],
        today: date,
        values: Optional[Dict[str, Any]] = None,
        group: Optional[Sequence[Mapping[str, Any]]] = None,
    ):
        self.row = row
        self.params = params
        self.today = today
        self.values = values if values is not None else {}
        self.group = group

    def for_row(self, row: Mapping[str, Any]) -> "EvalContext":
        return EvalContext(row, self.params, self.today)


class Expr:
    """Base expression node"""

    is_aggregate = False
    is_window = False
    sql_native = False

    def evaluate(self, ctx: EvalContext) -> Any:
        raise NotImplementedError

    def children(self) -> Tuple["Expr", ...]:
        return ()

    def walk(self) -> Iterator["Expr"]:
        yield self
        for child in self.children():
            yield from child.walk()

    def sql_compilable(self) -> bool:
        return all(node.sql_native for node in self.walk())

    def contains_aggregate(self) -> bool:
        return any(node.is_aggregate for node in self.walk())


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, int):
        return Decimal(value)
    return Decimal(str(value))


def _normalize(value: Any) -> Any:
    # floats are folded into Decimal so mixed arithmetic stays exact
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def is_true(value: Any) -> bool:
    """SQL truthiness: only a non-null true value passes a filter"""
    return value is not None and bool(value)


# --- Row-level nodes ---------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Column(Expr):
    table: str
    column: str

    sql_native = True

    @property
    def key(self) -> str:
        return f"{self.table}.{self.column}"

    def evaluate(self, ctx: EvalContext) -> Any:
        return ctx.row.get(self.key)


@dataclass(frozen=True, eq=False)
class Literal(Expr):
    value: Any

    sql_native = True

    def evaluate(self, ctx: EvalContext) -> Any:
        return self.value


@dataclass(frozen=True, eq=False)
class Parameter(Expr):
    name: str

    sql_native = True

    def evaluate(self, ctx: EvalContext) -> Any:
        return ctx.params.get(self.name)


@dataclass(frozen=True, eq=False)
class Ref(Expr):
    """Reference to an already projected output column"""

    name: str

    def evaluate(self, ctx: EvalContext) -> Any:
        return ctx.values[self.name]


_COMPARISONS = {
    "=": operator.eq,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True, eq=False)
class Compare(Expr):
    op: str
    left: Expr
    right: Expr

    sql_native = True

    def children(self) -> Tuple[Expr, ...]:
        return (self.left, self.right)

    def evaluate(self, ctx: EvalContext) -> Any:
        left = _normalize(self.left.evaluate(ctx))
        right = _normalize(self.right.evaluate(ctx))
        if left is None or right is None:
            return None
        return _COMPARISONS[self.op](left, right)


@dataclass(frozen=True, eq=False)
class And(Expr):
    operands: Tuple[Expr, ...]

    sql_native = True

    def children(self) -> Tuple[Expr, ...]:
        return self.operands

    def evaluate(self, ctx: EvalContext) -> Any:
        result: Optional[bool] = True
        for operand in self.operands:
            value = operand.evaluate(ctx)
            if value is None:
                result = None
            elif not value:
                return False
        return result


@dataclass(frozen=True, eq=False)
class Or(Expr):
    operands: Tuple[Expr, ...]

    sql_native = True

    def children(self) -> Tuple[Expr, ...]:
        return self.operands

    def evaluate(self, ctx: EvalContext) -> Any:
        result: Optional[bool] = False
        for operand in self.operands:
            value = operand.evaluate(ctx)
            if value is None:
                result = None
            elif value:
                return True
        return result


@dataclass(frozen=True, eq=False)
class Not(Expr):
    operand: Expr

    sql_native = True

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.operand.evaluate(ctx)
        return None if value is None else not value


@dataclass(frozen=True, eq=False)
class InList(Expr):
    operand: Expr
    values: Tuple[Any, ...]

    sql_native = True

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.operand.evaluate(ctx)
        if value is None:
            return None
        return value in self.values


@dataclass(frozen=True, eq=False)
class Between(Expr):
    """Inclusive on both ends"""

    operand: Expr
    low: Expr
    high: Expr

    sql_native = True

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand, self.low, self.high)

    def evaluate(self, ctx: EvalContext) -> Any:
        return And((Compare(">=", self.operand, self.low), Compare("<=", self.operand, self.high))).evaluate(ctx)


_ARITHMETIC = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
}


@dataclass(frozen=True, eq=False)
class Arithmetic(Expr):
    op: str
    left: Expr
    right: Expr

    def __post_init__(self):
        # SQL division semantics differ per engine (integer division), so "/" stays in-process
        object.__setattr__(self, "sql_native", self.op in _ARITHMETIC)

    def children(self) -> Tuple[Expr, ...]:
        return (self.left, self.right)

    def evaluate(self, ctx: EvalContext) -> Any:
        left = _normalize(self.left.evaluate(ctx))
        right = _normalize(self.right.evaluate(ctx))
        if left is None or right is None:
            return None
        if self.op == "/":
            if right == 0:
                return None
            return _to_decimal(left) / _to_decimal(right)
        if isinstance(left, Decimal) or isinstance(right, Decimal):
            left, right = _to_decimal(left), _to_decimal(right)
        return _ARITHMETIC[self.op](left, right)


@dataclass(frozen=True, eq=False)
class Case(Expr):
    """Searched CASE; first true condition wins, NULL conditions count as false"""

    whens: Tuple[Tuple[Expr, Expr], ...]
    default: Expr

    def children(self) -> Tuple[Expr, ...]:
        nodes: List[Expr] = []
        for condition, value in self.whens:
            nodes.extend((condition, value))
        nodes.append(self.default)
        return tuple(nodes)

    def evaluate(self, ctx: EvalContext) -> Any:
        for condition, value in self.whens:
            if is_true(condition.evaluate(ctx)):
                return value.evaluate(ctx)
        return self.default.evaluate(ctx)


@dataclass(frozen=True, eq=False)
class AsNumber(Expr):
    """Predicate as 1/0 so it can be averaged into a proportion"""

    predicate: Expr

    def children(self) -> Tuple[Expr, ...]:
        return (self.predicate,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.predicate.evaluate(ctx)
        if value is None:
            return None
        return 1 if value else 0


def _describe(expr: Expr) -> str:
    if isinstance(expr, Column):
        return expr.key
    return type(expr).__name__


@dataclass(frozen=True, eq=False)
class ParseDate(Expr):
    operand: Expr
    fmt: str = STORED_DATE_FORMAT

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.operand.evaluate(ctx)
        if value is None:
            return None
        if isinstance(value, date):
            return value
        try:
            return parse_stored_date(value, self.fmt)
        except ValueError as e:
            raise InvalidValueError(_describe(self.operand), value, str(e)) from e


@dataclass(frozen=True, eq=False)
class DatePart(Expr):
    part: str  # "year" or "month"
    operand: Expr

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.operand.evaluate(ctx)
        if value is None:
            return None
        return getattr(value, self.part)


@dataclass(frozen=True, eq=False)
class DaysSince(Expr):
    """Days from the operand date until the evaluation date"""

    operand: Expr

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.operand.evaluate(ctx)
        if value is None:
            return None
        return days_between(value, ctx.today)


@dataclass(frozen=True, eq=False)
class LastSegment(Expr):
    """Text after the last separator, untrimmed; the whole text when absent"""

    operand: Expr
    separator: str = ","

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.operand.evaluate(ctx)
        if value is None:
            return None
        return str(value).rsplit(self.separator, 1)[-1]


@dataclass(frozen=True, eq=False)
class Round(Expr):
    """Half away from zero, on Decimal"""

    operand: Expr
    digits: int = 0

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, ctx: EvalContext) -> Any:
        value = self.operand.evaluate(ctx)
        if value is None:
            return None
        return _to_decimal(value).quantize(Decimal(1).scaleb(-self.digits), rounding=ROUND_HALF_UP)


# --- Aggregates ----------------------------------------------------------------


class Aggregate(Expr):
    is_aggregate = True
    operand: Optional[Expr] = None

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,) if self.operand is not None else ()

    def _values(self, ctx: EvalContext) -> List[Any]:
        if ctx.group is None:
            raise TypeError(f"{type(self).__name__} evaluated outside a group")
        values = (self.operand.evaluate(ctx.for_row(row)) for row in ctx.group)
        return [_normalize(v) for v in values if v is not None]


@dataclass(frozen=True, eq=False)
class Count(Aggregate):
    """COUNT(operand) counts non-null values; COUNT(*) when operand is None"""

    operand: Optional[Expr] = None

    def evaluate(self, ctx: EvalContext) -> Any:
        if self.operand is None:
            if ctx.group is None:
                raise TypeError("Count evaluated outside a group")
            return len(ctx.group)
        return len(self._values(ctx))


@dataclass(frozen=True, eq=False)
class Sum(Aggregate):
    operand: Optional[Expr] = None

    def evaluate(self, ctx: EvalContext) -> Any:
        values = self._values(ctx)
        if not values:
            return None
        if any(isinstance(v, Decimal) for v in values):
            return sum((_to_decimal(v) for v in values), Decimal(0))
        return sum(values)


@dataclass(frozen=True, eq=False)
class Avg(Aggregate):
    operand: Optional[Expr] = None

    def evaluate(self, ctx: EvalContext) -> Any:
        values = self._values(ctx)
        if not values:
            return None
        return sum((_to_decimal(v) for v in values), Decimal(0)) / len(values)


@dataclass(frozen=True, eq=False)
class Max(Aggregate):
    operand: Optional[Expr] = None

    def evaluate(self, ctx: EvalContext) -> Any:
        values = self._values(ctx)
        return max(values) if values else None


# --- Ordering and window ranking ------------------------------------------------


@dataclass(frozen=True, eq=False)
class SortKey:
    expr: Expr
    descending: bool = False


@dataclass(frozen=True, eq=False)
class Rank(Expr):
    """RANK() OVER (ORDER BY keys); computed by the pipeline across all result rows"""

    keys: Tuple[SortKey, ...]

    is_window = True

    def children(self) -> Tuple[Expr, ...]:
        return tuple(k.expr for k in self.keys)

    def evaluate(self, ctx: EvalContext) -> Any:
        raise TypeError("Rank is computed over the whole result, not per row")


# --- Builders -----------------------------------------------------------------


def col(table: str, column: str) -> Column:
    return Column(table, column)


def lit(value: Any) -> Literal:
    return Literal(value)


def param(name: str) -> Parameter:
    return Parameter(name)


def ref(name: str) -> Ref:
    return Ref(name)


def eq(left: Expr, right: Expr) -> Compare:
    return Compare("=", left, right)


def lt(left: Expr, right: Expr) -> Compare:
    return Compare("<", left, right)


def gt(left: Expr, right: Expr) -> Compare:
    return Compare(">", left, right)


def and_(*operands: Expr) -> And:
    return And(tuple(operands))


def or_(*operands: Expr) -> Or:
    return Or(tuple(operands))


def in_(operand: Expr, *values: Any) -> InList:
    return InList(operand, tuple(values))


def between(operand: Expr, low: Any, high: Any) -> Between:
    return Between(operand, lit(low), lit(high))


def mul(left: Expr, right: Expr) -> Arithmetic:
    return Arithmetic("*", left, right)


def div(left: Expr, right: Expr) -> Arithmetic:
    return Arithmetic("/", left, right)


def case(*whens: Tuple[Expr, Any], default: Any = None) -> Case:
    def wrap(value: Any) -> Expr:
        return value if isinstance(value, Expr) else lit(value)

    return Case(tuple((cond, wrap(value)) for cond, value in whens), wrap(default))


def asc(expr: Expr) -> SortKey:
    return SortKey(expr, descending=False)


def desc(expr: Expr) -> SortKey:
    return SortKey(expr, descending=True)


def conjuncts(predicate: Optional[Expr]) -> List[Expr]:
    """Flatten top-level ANDs"""
    if predicate is None:
        return []
    if isinstance(predicate, And):
        result: List[Expr] = []
        for operand in predicate.operands:
            result.extend(conjuncts(operand))
        return result
    return [predicate]
