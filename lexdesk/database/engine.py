"""Async SQLAlchemy engine and statement executor"""

import logging
import os
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from lexdesk.errors import ConstraintViolation

logger = logging.getLogger(__name__)


def create_engine_from_env() -> AsyncEngine:
    """Build the async engine from DATABASE_URL (psycopg driver)"""
    url = os.getenv("DATABASE_URL", "postgresql+psycopg://localhost/lexdesk")
    if url.startswith("postgres://"):
        url = "postgresql+psycopg://" + url[len("postgres://"):]
    elif url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
    )


class SqlExecutor:
    """Runs one statement per transaction and returns rows as dicts"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def fetch(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params or {})
                if not result.returns_rows:
                    return []
                return [dict(row._mapping) for row in result]
        except IntegrityError as e:
            raise ConstraintViolation(str(e.orig) if e.orig else str(e)) from e

    async def health_check(self) -> bool:
        try:
            await self.fetch("SELECT 1")
            return True
        except Exception:
            logger.warning("Database health check failed", exc_info=True)
            return False

    async def dispose(self):
        await self.engine.dispose()
