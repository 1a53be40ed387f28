"""Dependency injection for FastAPI endpoints"""

import logging
from functools import lru_cache
from fastapi import Request

from lending_insights.domain.queries import default_catalog
from lending_insights.executor import Executor
from lending_insights.infrastructure.database.session import get_engine
from lending_insights.infrastructure.database.stores import SqlAlchemyStore


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


@lru_cache(maxsize=1)
def get_executor() -> Executor:
    """Provide the process-wide executor over the configured database"""
    catalog = default_catalog()
    logging.info("Query catalog loaded", extra={"query_count": len(catalog)})
    return Executor(catalog, SqlAlchemyStore(get_engine()))
