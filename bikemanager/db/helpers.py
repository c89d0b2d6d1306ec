"""
Database helper functions for common patterns.
Reduces boilerplate in the Postgres-backed stores.
"""

from typing import Any

import psycopg

from bikemanager.db.pool import DatabasePoolManager
from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def fetch_one(
    pool: DatabasePoolManager, query: str, params: tuple = ()
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        pool: Pool to borrow a connection from
        query: SQL query with %s placeholders
        params: Query parameters

    Returns:
        Dict with row data or None if no results
    """
    try:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
                return row if row else None

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e


async def fetch_all(
    pool: DatabasePoolManager, query: str, params: tuple = ()
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.

    Args:
        pool: Pool to borrow a connection from
        query: SQL query with %s placeholders
        params: Query parameters

    Returns:
        List of dicts with row data
    """
    try:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_all") from e


async def execute_query(pool: DatabasePoolManager, query: str, params: tuple = ()) -> int:
    """
    Execute query and return number of affected rows.

    Conditional writes (ON CONFLICT DO NOTHING, guarded UPDATEs) report 0 when
    the guard did not match, which callers use as their atomic outcome.
    """
    try:
        async with pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="execute") from e


async def execute_script(pool: DatabasePoolManager, statements: list[str]) -> None:
    """Run DDL statements in one transaction."""
    try:
        async with pool.transaction() as conn:
            for statement in statements:
                await conn.execute(statement)

        logger.debug("Schema statements applied", statement_count=len(statements))

    except psycopg.Error as e:
        logger.error("Schema setup failed", statement_count=len(statements), error=str(e))
        raise DatabaseError(f"Schema setup failed: {e}", operation="execute_script") from e
