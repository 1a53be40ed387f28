"""Domain models - query definitions, parameter specs and the lending schema"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from lending_insights.domain.expressions import Column, Expr, SortKey


class ColumnType(str, Enum):
    """Semantic type of a schema or output column"""

    INTEGER = "integer"
    DECIMAL = "decimal"
    STRING = "string"
    DATE = "date"


class QueryShape(str, Enum):
    """The fixed families an analytical query belongs to"""

    FILTER_JOIN_SORT = "filter_join_sort"
    GROUP_AGGREGATE = "group_aggregate"
    CONDITIONAL_COUNT = "conditional_count"
    RANKED_AGGREGATE = "ranked_aggregate"
    DERIVED_RATIO = "derived_ratio"
    JOIN_MISMATCH = "join_mismatch"
    CORRELATION = "correlation"


# Read-only lending schema: table -> column -> semantic type.
# customer_since and transaction_date are stored as MM/DD/YYYY text.
LENDING_SCHEMA: Dict[str, Dict[str, ColumnType]] = {
    "customer": {
        "customer_id": ColumnType.INTEGER,
        "name": ColumnType.STRING,
        "credit_score": ColumnType.INTEGER,
        "address": ColumnType.STRING,
        "age": ColumnType.INTEGER,
        "customer_since": ColumnType.STRING,
    },
    "loan": {
        "loan_id": ColumnType.INTEGER,
        "customer_id": ColumnType.INTEGER,
        "loan_amount": ColumnType.DECIMAL,
        "loan_purpose": ColumnType.STRING,
        "default_risk": ColumnType.STRING,
        "loan_status": ColumnType.STRING,
    },
    "transaction": {
        "transaction_id": ColumnType.INTEGER,
        "loan_id": ColumnType.INTEGER,
        "customer_id": ColumnType.INTEGER,
        "transaction_type": ColumnType.STRING,
        "transaction_amount": ColumnType.DECIMAL,
        "status": ColumnType.STRING,
        "transaction_date": ColumnType.STRING,
    },
    "behavior_log": {
        "log_id": ColumnType.INTEGER,
        "customer_id": ColumnType.INTEGER,
        "location": ColumnType.STRING,
    },
    "customer_feedback": {
        "feedback_id": ColumnType.INTEGER,
        "loan_id": ColumnType.INTEGER,
        "feedback_text": ColumnType.STRING,
        "sentiment_score": ColumnType.DECIMAL,
    },
}


def coerce_value(value: Any, column_type: ColumnType) -> Any:
    """Convert a value to the Python type of a semantic column type. Raises ValueError."""
    if value is None:
        return None
    if column_type is ColumnType.INTEGER:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, Decimal):
            if not value.is_finite() or value != value.to_integral_value():
                raise ValueError(f"{value} is not a whole number")
            return int(value)
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(f"{value} is not a whole number")
            return int(value)
        return int(str(value))
    if column_type is ColumnType.DECIMAL:
        if isinstance(value, bool):
            raise ValueError("boolean is not a decimal")
        if not isinstance(value, Decimal):
            try:
                value = Decimal(str(value))
            except InvalidOperation as e:
                raise ValueError(f"{value!r} is not a decimal") from e
        if not value.is_finite():
            raise ValueError(f"{value} is not a finite decimal")
        return value
    if column_type is ColumnType.DATE:
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value))
    return str(value)


@dataclass(frozen=True)
class ParameterSpec:
    """Declared query parameter"""

    name: str
    type: ColumnType
    default: Any = None
    required: bool = False
    minimum: Optional[Any] = None
    choices: Optional[Tuple[Any, ...]] = None
    description: str = ""


@dataclass(frozen=True, eq=False)
class Join:
    """Equi-join of a new table onto the tables already in scope"""

    table: str
    left: Column
    right: Column
    outer: bool = False  # LEFT OUTER when True


@dataclass(frozen=True)
class Source:
    """FROM clause: base table plus ordered joins"""

    table: str
    joins: Tuple[Join, ...] = ()

    @property
    def tables(self) -> List[str]:
        return [self.table] + [j.table for j in self.joins]


@dataclass(frozen=True, eq=False)
class OutputColumn:
    name: str
    type: ColumnType
    expr: Expr


@dataclass(frozen=True, eq=False)
class QueryDefinition:
    """Declarative analytical query over the lending schema"""

    name: str
    description: str
    shape: QueryShape
    source: Source
    columns: Tuple[OutputColumn, ...]
    where: Optional[Expr] = None
    group_by: Tuple[Expr, ...] = ()
    having: Optional[Expr] = None
    distinct: bool = False
    order_by: Tuple[SortKey, ...] = ()
    limit: Optional[Expr] = None
    parameters: Tuple[ParameterSpec, ...] = field(default_factory=tuple)

    @property
    def output_columns(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def is_grouped(self) -> bool:
        return bool(self.group_by) or any(c.expr.contains_aggregate() for c in self.columns)

    def parameter(self, name: str) -> Optional[ParameterSpec]:
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None

    def expressions(self) -> Iterator[Expr]:
        """Every expression node reachable from the definition"""
        roots: List[Expr] = [j.left for j in self.source.joins] + [j.right for j in self.source.joins]
        roots.extend(c.expr for c in self.columns)
        roots.extend(self.group_by)
        roots.extend(k.expr for k in self.order_by)
        for optional in (self.where, self.having, self.limit):
            if optional is not None:
                roots.append(optional)
        for root in roots:
            yield from root.walk()

    def referenced_columns(self) -> List[Column]:
        """Distinct schema columns the definition reads, in first-seen order"""
        seen: Dict[str, Column] = {}
        for node in self.expressions():
            if isinstance(node, Column) and node.key not in seen:
                seen[node.key] = node
        return list(seen.values())
