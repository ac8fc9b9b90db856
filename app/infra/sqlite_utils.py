from __future__ import annotations

import asyncio
import os
import sqlite3
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import aiosqlite

logger = logging.getLogger(__name__)

T = TypeVar('T')


def apply_pragmas_sync(conn: sqlite3.Connection) -> None:
    """Apply recommended SQLite PRAGMAs for this project.

    - WAL journal mode (persistent setting per database file)
    - NORMAL synchronous (balanced durability/perf for WAL)
    - foreign_keys ON (per-connection)
    - busy_timeout 30000 ms
    """
    for pragma in (
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        "PRAGMA foreign_keys=ON",
        "PRAGMA busy_timeout=30000",
    ):
        try:
            conn.execute(pragma)
        except sqlite3.DatabaseError as e:
            logger.debug(f"{pragma} not applied: {e}")


def resolve_db_path(db_path: Optional[str]) -> str:
    return db_path or os.getenv("DATABASE_PATH", "billing.db")


def open_connection(db_path: Optional[str]) -> sqlite3.Connection:
    conn = sqlite3.connect(resolve_db_path(db_path))
    apply_pragmas_sync(conn)
    return conn


async def apply_pragmas_async(conn: aiosqlite.Connection) -> None:
    for pragma in (
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        "PRAGMA foreign_keys=ON",
        "PRAGMA busy_timeout=30000",
    ):
        try:
            await conn.execute(pragma)
        except sqlite3.DatabaseError as e:
            logger.debug(f"{pragma} not applied: {e}")


@asynccontextmanager
async def open_async_connection(db_path: Optional[str]) -> aiosqlite.Connection:
    # isolation_level=None: transactions are opened explicitly with BEGIN IMMEDIATE
    # where a read-modify-write has to be atomic; plain statements autocommit.
    conn = await aiosqlite.connect(resolve_db_path(db_path), isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await apply_pragmas_async(conn)
    try:
        yield conn
    finally:
        await conn.close()


def _is_locked_error(error: Exception) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "database is locked" in str(error).lower()


async def retry_async_db_operation(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 0.1,
    backoff_multiplier: float = 2.0,
    operation_name: str = "db_operation",
    operation_context: Optional[Dict[str, Any]] = None,
) -> T:
    """
    Run an async DB operation, retrying with exponential backoff on "database is locked".

    Args:
        operation: Coroutine factory performing the DB work (opens its own connection)
        max_attempts: Maximum number of attempts
        initial_delay: Delay before the second attempt, seconds
        backoff_multiplier: Multiplier applied to the delay after each failure
        operation_name: Name used in log messages
        operation_context: Extra fields logged with each retry

    Returns:
        Whatever operation returns

    Raises:
        sqlite3.OperationalError: When every attempt hit a locked database
        Any other exception raised by operation, unchanged
    """
    delay = initial_delay
    context = operation_context or {}

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except sqlite3.OperationalError as e:
            if not _is_locked_error(e) or attempt == max_attempts:
                if _is_locked_error(e):
                    logger.error(
                        f"[DB RETRY] {operation_name}: all {max_attempts} attempts failed, database is locked "
                        f"{context}"
                    )
                raise
            logger.warning(
                f"[DB RETRY] {operation_name}: attempt {attempt}/{max_attempts} failed, database is locked. "
                f"Retrying in {delay:.2f}s {context}"
            )
            await asyncio.sleep(delay)
            delay *= backoff_multiplier

    raise RuntimeError(f"Unexpected state in retry_async_db_operation ({operation_name})")
