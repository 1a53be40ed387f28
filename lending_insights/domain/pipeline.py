"""Query pipeline - evaluates a QueryDefinition over rows fetched from a store.

Order of operations mirrors SQL:
WHERE -> GROUP BY/aggregates -> SELECT -> HAVING -> window rank -> DISTINCT
-> ORDER BY -> LIMIT. Stores only supply joined rows (optionally pre-filtered by
pushed-down conjuncts); all other semantics live here so every store produces
the same result for the same data.
"""

from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from lending_insights.domain.exceptions import InvalidValueError
from lending_insights.domain.expressions import Column, EvalContext, Expr, SortKey, conjuncts, is_true
from lending_insights.domain.models import QueryDefinition, Source, coerce_value

Row = Dict[str, Any]


class RowStore(Protocol):
    """Backing store that yields joined rows keyed by 'table.column'"""

    def pushable(self, predicate: Expr) -> bool:
        ...

    def fetch(
        self,
        source: Source,
        columns: Sequence[Column],
        predicates: Sequence[Expr],
        params: Mapping[str, Any],
    ) -> Iterable[Dict[str, Any]]:
        ...


def split_predicate(
    where: Optional[Expr],
    pushable: Optional[Callable[[Expr], bool]] = None,
) -> Tuple[List[Expr], List[Expr]]:
    """Split WHERE into (pushed, residual) conjuncts; nothing is pushed without a pushable check"""
    pushed: List[Expr] = []
    residual: List[Expr] = []
    for conjunct in conjuncts(where):
        if pushable is not None and pushable(conjunct):
            pushed.append(conjunct)
        else:
            residual.append(conjunct)
    return pushed, residual


def _nulls_first(value: Any) -> Tuple:
    return (0,) if value is None else (1, value)


def sort_contexts(contexts: List[EvalContext], keys: Sequence[SortKey]) -> List[EvalContext]:
    """Stable multi-key sort; NULL lowest, so first ascending and last descending"""
    ordered = list(contexts)
    for key in reversed(keys):
        ordered.sort(key=lambda ctx: _nulls_first(key.expr.evaluate(ctx)), reverse=key.descending)
    return ordered


def assign_ranks(contexts: List[EvalContext], name: str, keys: Sequence[SortKey]) -> None:
    """Standard competition ranking: ties share a rank, the next key gets its position"""
    previous: Optional[Tuple] = None
    rank = 0
    for position, ctx in enumerate(sort_contexts(contexts, keys), start=1):
        composite = tuple(_nulls_first(k.expr.evaluate(ctx)) for k in keys)
        if previous is None or composite != previous:
            rank = position
        ctx.values[name] = rank
        previous = composite


def _group(definition: QueryDefinition, rows: List[Dict[str, Any]], params: Mapping[str, Any], today: date) -> List[EvalContext]:
    if not definition.group_by:
        # aggregate without GROUP BY: exactly one group, even over no rows
        return [EvalContext(rows[0] if rows else {}, params, today, group=rows)]

    groups: Dict[Tuple, List[Dict[str, Any]]] = {}
    for row in rows:
        ctx = EvalContext(row, params, today)
        key = tuple(expr.evaluate(ctx) for expr in definition.group_by)
        groups.setdefault(key, []).append(row)

    return [EvalContext(members[0], params, today, group=members) for members in groups.values()]


def run_query(
    definition: QueryDefinition,
    store: RowStore,
    params: Mapping[str, Any],
    today: date,
) -> List[Row]:
    """Execute a definition end to end and return typed rows in output order"""
    pushed, residual = split_predicate(definition.where, store.pushable)
    fetched = store.fetch(definition.source, definition.referenced_columns(), pushed, params)

    rows = []
    for row in fetched:
        ctx = EvalContext(row, params, today)
        if all(is_true(p.evaluate(ctx)) for p in residual):
            rows.append(row)

    if definition.is_grouped:
        contexts = _group(definition, rows, params, today)
    else:
        contexts = [EvalContext(row, params, today) for row in rows]

    windows = [c for c in definition.columns if c.expr.is_window]
    for ctx in contexts:
        for column in definition.columns:
            ctx.values[column.name] = None if column.expr.is_window else column.expr.evaluate(ctx)

    if definition.having is not None:
        contexts = [ctx for ctx in contexts if is_true(definition.having.evaluate(ctx))]

    for column in windows:
        assign_ranks(contexts, column.name, column.expr.keys)

    if definition.distinct:
        seen = set()
        unique = []
        for ctx in contexts:
            fingerprint = tuple(ctx.values[name] for name in definition.output_columns)
            if fingerprint not in seen:
                seen.add(fingerprint)
                unique.append(ctx)
        contexts = unique

    if definition.order_by:
        contexts = sort_contexts(contexts, definition.order_by)

    if definition.limit is not None:
        limit = definition.limit.evaluate(EvalContext({}, params, today))
        if limit is not None:
            contexts = contexts[:limit]

    return [_typed_row(definition, ctx) for ctx in contexts]


def _typed_row(definition: QueryDefinition, ctx: EvalContext) -> Row:
    row: Row = {}
    for column in definition.columns:
        value = ctx.values[column.name]
        try:
            row[column.name] = coerce_value(value, column.type)
        except (TypeError, ValueError) as e:
            raise InvalidValueError(column.name, value, f"not a valid {column.type.value}: {e}") from e
    return row
