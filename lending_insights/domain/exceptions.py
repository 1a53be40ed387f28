"""Domain-specific exceptions"""

from typing import Any, Dict, Optional


class LendingInsightsError(Exception):
    """Base exception for the reporting engine"""

    pass


class CatalogError(LendingInsightsError):
    """Query catalog could not be built"""

    pass


class DuplicateNameError(CatalogError):
    """A query with the same name is already registered"""

    def __init__(self, name: str):
        super().__init__(f"Query '{name}' is already registered")
        self.name = name


class SchemaMismatchError(CatalogError):
    """Definition references a table, column, parameter or alias that does not exist"""

    def __init__(self, query_name: str, detail: str, table: Optional[str] = None, column: Optional[str] = None):
        super().__init__(f"Query '{query_name}': {detail}")
        self.query_name = query_name
        self.table = table
        self.column = column


class CatalogFrozenError(CatalogError):
    """Registration attempted after the catalog was frozen"""

    pass


class NotFoundError(LendingInsightsError):
    """No query registered under the requested name"""

    def __init__(self, name: str):
        super().__init__(f"Query '{name}' is not registered")
        self.name = name


class ParameterError(LendingInsightsError):
    """Parameter missing, unknown or outside its declared domain"""

    def __init__(self, query_name: str, parameter: str, detail: str):
        super().__init__(f"Query '{query_name}', parameter '{parameter}': {detail}")
        self.query_name = query_name
        self.parameter = parameter


class BackingStoreError(LendingInsightsError):
    """Backing store failed or is unavailable"""

    pass


class InvalidValueError(LendingInsightsError):
    """Stored value could not be interpreted (e.g. malformed date text)"""

    def __init__(self, column: str, value: Any, detail: str):
        super().__init__(f"Invalid value {value!r} in column '{column}': {detail}")
        self.column = column
        self.value = value


class ExecutionError(LendingInsightsError):
    """Query execution failed; wraps store and data-quality failures"""

    def __init__(
        self,
        query_name: str,
        params: Dict[str, Any],
        detail: str,
        table: Optional[str] = None,
        column: Optional[str] = None,
    ):
        location = ""
        if table and column:
            location = f" at {table}.{column}"
        elif column:
            location = f" at {column}"
        super().__init__(f"Query '{query_name}' failed{location} with params {params}: {detail}")
        self.query_name = query_name
        self.params = params
        self.table = table
        self.column = column
