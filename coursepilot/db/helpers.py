"""
Database helper functions for common query patterns.
All helpers raise DatabaseError so callers handle a single exception type.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

import psycopg

from coursepilot.db.pool import db_pool
from coursepilot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FetchMode = Literal["one", "all", "none"]


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _borrow(
    connection: psycopg.AsyncConnection | None,
) -> AsyncIterator[psycopg.AsyncConnection]:
    if connection is not None:
        yield connection
        return
    async with db_pool.connection() as conn:
        yield conn


async def _run(
    operation: str,
    query: str,
    params: tuple,
    connection: psycopg.AsyncConnection | None,
    fetch: FetchMode,
) -> Any:
    try:
        async with _borrow(connection) as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                if fetch == "one":
                    return await cur.fetchone()
                if fetch == "all":
                    return await cur.fetchall()
                return cur.rowcount

    except psycopg.Error as e:
        logger.error(f"Database {operation} error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e
    except RuntimeError as e:
        # Pool not initialized or already closed
        logger.error(f"Database {operation} unavailable", error=str(e))
        raise DatabaseError(str(e), operation=operation, recoverable=False) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Dict with row data or None if no results
    """
    row = await _run("fetch_one", query, params, connection, "one")
    return row if row else None


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return all rows as list of dicts."""
    return await _run("fetch_all", query, params, connection, "all") or []


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Execute a write and return the affected row count."""
    return await _run("execute", query, params, connection, "none")
