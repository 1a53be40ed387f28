"""Row stores backing query execution"""

import operator
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from sqlalchemy import Numeric, Table, and_, between, literal, not_, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Select

from lending_insights.domain.exceptions import BackingStoreError
from lending_insights.domain.expressions import (
    And,
    Arithmetic,
    Between,
    Column,
    Compare,
    Expr,
    InList,
    Literal,
    Not,
    Or,
    Parameter,
)
from lending_insights.domain.models import Source
from lending_insights.infrastructure.database.models import Base


_OPERATORS = {
    "=": operator.eq,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
}


def _label(column: Column) -> str:
    return f"{column.table}__{column.column}"


def compile_predicate(expr: Expr, tables: Mapping[str, Table], params: Mapping[str, Any]) -> Any:
    """Render a sql_native expression as a SQLAlchemy clause"""
    if isinstance(expr, Column):
        return tables[expr.table].c[expr.column]
    if isinstance(expr, Literal):
        return literal(expr.value)
    if isinstance(expr, Parameter):
        return literal(params.get(expr.name))
    if isinstance(expr, Compare):
        left = compile_predicate(expr.left, tables, params)
        right = compile_predicate(expr.right, tables, params)
        return _OPERATORS[expr.op](left, right)
    if isinstance(expr, And):
        return and_(*(compile_predicate(o, tables, params) for o in expr.operands))
    if isinstance(expr, Or):
        return or_(*(compile_predicate(o, tables, params) for o in expr.operands))
    if isinstance(expr, Not):
        return not_(compile_predicate(expr.operand, tables, params))
    if isinstance(expr, InList):
        return compile_predicate(expr.operand, tables, params).in_(list(expr.values))
    if isinstance(expr, Between):
        return between(
            compile_predicate(expr.operand, tables, params),
            compile_predicate(expr.low, tables, params),
            compile_predicate(expr.high, tables, params),
        )
    if isinstance(expr, Arithmetic) and expr.sql_native:
        left = compile_predicate(expr.left, tables, params)
        right = compile_predicate(expr.right, tables, params)
        return _OPERATORS[expr.op](left, right)
    raise ValueError(f"{type(expr).__name__} has no SQL rendition")


class SqlAlchemyStore:
    """
    Relational store reached through SQLAlchemy Core.

    Joins, projection and sql_native WHERE conjuncts run in the database.
    On dialects without native decimals (SQLite stores Numeric as float),
    conjuncts touching decimal columns stay in-process. Rows come back ordered by the primary keys of the joined tables so that
    identical data always yields identical row order. Read-only: only SELECT
    statements are issued.
    """

    def __init__(self, engine: Engine, metadata=Base.metadata):
        self.engine = engine
        self.metadata = metadata

    def _is_decimal(self, column: Column) -> bool:
        table = self.metadata.tables.get(column.table)
        if table is None or column.column not in table.c:
            return False
        return isinstance(table.c[column.column].type, Numeric)

    def pushable(self, predicate: Expr) -> bool:
        if not predicate.sql_compilable():
            return False
        if self.engine.dialect.supports_native_decimal:
            return True
        return not any(isinstance(node, Column) and self._is_decimal(node) for node in predicate.walk())

    def _tables(self, source: Source) -> Dict[str, Table]:
        try:
            return {name: self.metadata.tables[name] for name in source.tables}
        except KeyError as e:
            raise BackingStoreError(f"Table {e} is not mapped") from e

    def build_statement(
        self,
        source: Source,
        columns: Sequence[Column],
        predicates: Sequence[Expr],
        params: Mapping[str, Any],
    ) -> Select:
        tables = self._tables(source)

        from_clause = tables[source.table]
        for join in source.joins:
            onclause = tables[join.left.table].c[join.left.column] == tables[join.table].c[join.right.column]
            from_clause = from_clause.join(tables[join.table], onclause, isouter=join.outer)

        selected = [tables[c.table].c[c.column].label(_label(c)) for c in columns] or [literal(1)]
        statement = select(*selected).select_from(from_clause)

        if predicates:
            statement = statement.where(and_(*(compile_predicate(p, tables, params) for p in predicates)))

        ordering = [pk for name in source.tables for pk in tables[name].primary_key.columns]
        return statement.order_by(*ordering)

    def fetch(
        self,
        source: Source,
        columns: Sequence[Column],
        predicates: Sequence[Expr],
        params: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        statement = self.build_statement(source, columns, predicates, params)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(statement)
                return [{c.key: mapping[_label(c)] for c in columns} for mapping in result.mappings()]
        except SQLAlchemyError as e:
            raise BackingStoreError(f"Store query failed: {e}") from e


class InMemoryStore:
    """
    Tables held as lists of plain dicts, joined in-process.

    Rows keep insertion order through joins. Missing keys read as NULL, and
    NULL join keys never match (outer joins still keep the left row). Nothing
    is pushed down: the pipeline evaluates every WHERE conjunct.
    """

    def __init__(self, tables: Mapping[str, Iterable[Mapping[str, Any]]]):
        self.tables = {name: [dict(row) for row in rows] for name, rows in tables.items()}

    def pushable(self, predicate: Expr) -> bool:
        return False

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        try:
            return self.tables[table]
        except KeyError:
            raise BackingStoreError(f"Table '{table}' is not loaded") from None

    @staticmethod
    def _qualify(table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        return {f"{table}.{name}": value for name, value in row.items()}

    def fetch(
        self,
        source: Source,
        columns: Sequence[Column],
        predicates: Sequence[Expr],
        params: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        rows = [self._qualify(source.table, row) for row in self._rows(source.table)]

        for join in source.joins:
            index: Dict[Any, List[Dict[str, Any]]] = defaultdict(list)
            for candidate in self._rows(join.table):
                key = candidate.get(join.right.column)
                if key is not None:
                    index[key].append(self._qualify(join.table, candidate))

            joined = []
            for row in rows:
                key = row.get(join.left.key)
                matches = index.get(key, []) if key is not None else []
                for match in matches:
                    joined.append({**row, **match})
                if not matches and join.outer:
                    joined.append(dict(row))
            rows = joined

        return rows
