"""Query executor - binds parameters, runs catalog queries against a store"""

import logging
import time
from collections.abc import Sequence
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from lending_insights.domain.catalog import QueryCatalog
from lending_insights.domain.exceptions import (
    BackingStoreError,
    ExecutionError,
    InvalidValueError,
    ParameterError,
)
from lending_insights.domain.models import QueryDefinition, coerce_value
from lending_insights.domain.pipeline import Row, RowStore, run_query
from lending_insights.infrastructure.observability.logging import log_query_execution
from lending_insights.infrastructure.observability.metrics import record_query_execution


def bind_parameters(definition: QueryDefinition, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Resolve supplied values against the definition's parameter specs.

    None counts as "not supplied" and falls back to the declared default.

    Raises:
        ParameterError: unknown name, missing required value, wrong type,
            below minimum, or outside declared choices
    """
    supplied = dict(params or {})
    declared = {spec.name for spec in definition.parameters}
    for name in sorted(supplied):
        if name not in declared:
            raise ParameterError(definition.name, name, "unknown parameter")

    bound: Dict[str, Any] = {}
    for spec in definition.parameters:
        value = supplied.get(spec.name)
        if value is None:
            if spec.required:
                raise ParameterError(definition.name, spec.name, "required parameter is missing")
            bound[spec.name] = spec.default
            continue

        if isinstance(value, bool):
            raise ParameterError(definition.name, spec.name, f"expected {spec.type.value}, got boolean")
        try:
            value = coerce_value(value, spec.type)
        except (TypeError, ValueError) as e:
            raise ParameterError(definition.name, spec.name, f"expected {spec.type.value}: {e}") from e

        if spec.minimum is not None and value < spec.minimum:
            raise ParameterError(definition.name, spec.name, f"must be >= {spec.minimum}, got {value}")
        if spec.choices is not None and value not in spec.choices:
            raise ParameterError(definition.name, spec.name, f"must be one of {list(spec.choices)}, got {value!r}")
        bound[spec.name] = value

    return bound


class ResultSet(Sequence):
    """
    Lazy, restartable result of one execution.

    The store is queried on first access (iteration, len, indexing); the rows
    are then kept on this object so later iterations replay them. A new
    execute() call always runs the query again.
    """

    def __init__(self, definition: QueryDefinition, params: Dict[str, Any], runner: Callable[[], List[Row]]):
        self.definition = definition
        self.params = params
        self._runner = runner
        self._rows: Optional[List[Row]] = None

    @property
    def columns(self) -> List[str]:
        return self.definition.output_columns

    @property
    def executed(self) -> bool:
        return self._rows is not None

    def _materialize(self) -> List[Row]:
        if self._rows is None:
            self._rows = self._runner()
        return self._rows

    def all(self) -> List[Row]:
        return list(self._materialize())

    def __iter__(self):
        return iter(self._materialize())

    def __len__(self) -> int:
        return len(self._materialize())

    def __getitem__(self, index):
        return self._materialize()[index]

    def __repr__(self) -> str:
        state = f"{len(self._rows)} rows" if self._rows is not None else "pending"
        return f"<ResultSet {self.definition.name} {state}>"


class Executor:
    """Runs catalog queries against a backing store; holds no state between calls"""

    def __init__(self, catalog: QueryCatalog, store: RowStore, clock: Callable[[], date] = date.today):
        self.catalog = catalog
        self.store = store
        self.clock = clock

    def list_queries(self) -> Set[str]:
        return self.catalog.list()

    def describe_query(self, name: str) -> QueryDefinition:
        return self.catalog.get(name)

    def execute(self, name: str, params: Optional[Mapping[str, Any]] = None) -> ResultSet:
        """
        Resolve and bind a query; rows are produced on first access.

        Raises:
            NotFoundError: name is not registered
            ParameterError: parameters fail validation
            ExecutionError: (on first access) store, type or data-quality failure
        """
        definition = self.catalog.get(name)
        try:
            bound = bind_parameters(definition, params)
        except ParameterError as e:
            record_query_execution(name, "parameter_error", 0.0)
            logging.warning(f"Parameter error: {e}", extra={"query_name": name})
            raise

        return ResultSet(definition, bound, lambda: self._run(definition, bound))

    def _run(self, definition: QueryDefinition, params: Dict[str, Any]) -> List[Row]:
        start_time = time.time()
        try:
            rows = run_query(definition, self.store, params, self.clock())

        except InvalidValueError as e:
            record_query_execution(definition.name, "execution_error", time.time() - start_time)
            logging.error(f"Invalid stored value: {e}", extra={"query_name": definition.name})
            table, _, column = e.column.rpartition(".")
            raise ExecutionError(definition.name, params, str(e), table=table or None, column=column) from e

        except BackingStoreError as e:
            record_query_execution(definition.name, "execution_error", time.time() - start_time)
            logging.error(f"Backing store error: {e}", extra={"query_name": definition.name})
            raise ExecutionError(definition.name, params, str(e)) from e

        except (TypeError, ArithmeticError) as e:
            # stored values of the wrong type, e.g. text where a number is expected
            record_query_execution(definition.name, "execution_error", time.time() - start_time)
            logging.error(f"Incompatible stored value: {e}", extra={"query_name": definition.name})
            raise ExecutionError(definition.name, params, f"incompatible stored value: {e}") from e

        duration = time.time() - start_time
        record_query_execution(definition.name, "success", duration, len(rows))
        log_query_execution(definition.name, params, "success", len(rows), duration * 1000)
        return rows
