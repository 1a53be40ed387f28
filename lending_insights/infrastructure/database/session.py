"""Database engine management with connection pooling"""

from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from lending_insights.config import settings


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Create a pooled engine; SQLite URLs skip the pool sizing options"""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Process-wide engine, created on first use"""
    return build_engine()
