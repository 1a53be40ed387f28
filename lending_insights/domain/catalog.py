"""Query catalog - registry of validated analytical query definitions"""

from typing import Dict, Mapping, Set

from lending_insights.domain.exceptions import (
    CatalogFrozenError,
    DuplicateNameError,
    NotFoundError,
    SchemaMismatchError,
)
from lending_insights.domain.expressions import Column, Parameter, Rank, Ref
from lending_insights.domain.models import LENDING_SCHEMA, ColumnType, QueryDefinition


class QueryCatalog:
    """
    Named query definitions, validated against a known schema on registration.

    Built once at startup, then frozen: register() after freeze() raises
    CatalogFrozenError so the registry stays read-only for executions.
    """

    def __init__(self, schema: Mapping[str, Mapping[str, ColumnType]] = LENDING_SCHEMA):
        self.schema = schema
        self._definitions: Dict[str, QueryDefinition] = {}
        self._frozen = False

    def register(self, definition: QueryDefinition) -> None:
        if self._frozen:
            raise CatalogFrozenError(f"Catalog is frozen; cannot register '{definition.name}'")
        if definition.name in self._definitions:
            raise DuplicateNameError(definition.name)
        self._validate(definition)
        self._definitions[definition.name] = definition

    def get(self, name: str) -> QueryDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise NotFoundError(name) from None

    def list(self) -> Set[str]:
        return set(self._definitions)

    def freeze(self) -> "QueryCatalog":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def _validate(self, definition: QueryDefinition) -> None:
        name = definition.name
        in_scope = definition.source.tables

        for table in in_scope:
            if table not in self.schema:
                raise SchemaMismatchError(name, f"unknown table '{table}'", table=table)
        if len(set(in_scope)) != len(in_scope):
            raise SchemaMismatchError(name, "a table appears more than once in the source")

        for node in definition.expressions():
            if isinstance(node, Column):
                if node.table not in self.schema:
                    raise SchemaMismatchError(name, f"unknown table '{node.table}'", table=node.table)
                if node.column not in self.schema[node.table]:
                    raise SchemaMismatchError(
                        name,
                        f"unknown column '{node.key}'",
                        table=node.table,
                        column=node.column,
                    )
                if node.table not in in_scope:
                    raise SchemaMismatchError(
                        name,
                        f"column '{node.key}' references a table outside the source",
                        table=node.table,
                        column=node.column,
                    )
            elif isinstance(node, Parameter) and definition.parameter(node.name) is None:
                raise SchemaMismatchError(name, f"undeclared parameter '{node.name}'")

        # join keys may only look back at tables already joined
        joined = [definition.source.table]
        for join in definition.source.joins:
            if join.left.table not in joined:
                raise SchemaMismatchError(name, f"join on '{join.left.key}' before its table is joined")
            if join.right.table != join.table:
                raise SchemaMismatchError(name, f"join key '{join.right.key}' is not on '{join.table}'")
            joined.append(join.table)

        outputs = definition.output_columns
        if len(set(outputs)) != len(outputs):
            raise SchemaMismatchError(name, "duplicate output column names")

        for position, column in enumerate(definition.columns):
            if column.expr.is_window and not isinstance(column.expr, Rank):
                raise SchemaMismatchError(name, f"unsupported window in '{column.name}'")
            for node in column.expr.walk():
                if node is not column.expr and node.is_window:
                    raise SchemaMismatchError(name, f"window nested inside '{column.name}'")
                if isinstance(node, Ref) and node.name not in outputs[:position]:
                    raise SchemaMismatchError(name, f"'{column.name}' refers to unknown or later column '{node.name}'")

        post_projection = [k.expr for k in definition.order_by]
        if definition.having is not None:
            post_projection.append(definition.having)
        for expr in post_projection:
            for node in expr.walk():
                if isinstance(node, Ref) and node.name not in outputs:
                    raise SchemaMismatchError(name, f"reference to unknown output column '{node.name}'")

        row_level = list(definition.group_by)
        if definition.where is not None:
            row_level.append(definition.where)
        if definition.limit is not None:
            row_level.append(definition.limit)
        for expr in row_level:
            for node in expr.walk():
                if node.is_aggregate or node.is_window or isinstance(node, Ref):
                    raise SchemaMismatchError(name, "aggregate, window or output reference in a row-level clause")

        if definition.having is not None and not definition.is_grouped:
            raise SchemaMismatchError(name, "HAVING without grouping")
