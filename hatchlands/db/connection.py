"""World database pool — one asyncpg pool per process.

``init_db`` opens the pool from Settings, registers the JSONB codecs the
repository relies on and bootstraps schema.sql inside a transaction, so a
half-applied schema never sticks. ``get_pool``/``close_db`` serve the runner.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import asyncpg
import structlog

from hatchlands.config import Settings

logger = structlog.get_logger()

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

_pool: Optional[asyncpg.Pool] = None


def _encode_document(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


async def _register_document_codecs(conn: asyncpg.Connection) -> None:
    """Creature genomes, appearance and lineage travel as dicts/lists."""
    for type_name in ("jsonb", "json"):
        await conn.set_type_codec(
            type_name,
            encoder=_encode_document,
            decoder=json.loads,
            schema="pg_catalog",
            format="text",
        )


async def apply_schema(conn: asyncpg.Connection) -> None:
    """Run schema.sql in one transaction. Every statement is idempotent."""
    async with conn.transaction():
        await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))


async def init_db(settings: Settings) -> asyncpg.Pool:
    """Open the world pool and make sure the schema exists.

    Args:
        settings: Supplies the DSN, pool bounds and connect timeout.

    Returns:
        The pool, also kept for ``get_pool()``.

    Raises:
        OSError, asyncpg.PostgresError, TimeoutError: If the database is
            unreachable or rejects the schema.
    """
    global _pool

    pool = await asyncpg.create_pool(
        settings.postgres_dsn,
        min_size=settings.postgres_pool_min,
        max_size=settings.postgres_pool_max,
        timeout=settings.postgres_connect_timeout_sec,
        init=_register_document_codecs,
    )
    try:
        async with pool.acquire() as conn:
            await apply_schema(conn)
    except BaseException:
        await pool.close()
        raise

    _pool = pool
    logger.info(
        "postgres_initialized",
        pool_min=settings.postgres_pool_min,
        pool_max=settings.postgres_pool_max,
    )
    return pool


def get_pool() -> asyncpg.Pool:
    """Return the world pool.

    Raises:
        RuntimeError: If ``init_db()`` has not run.
    """
    if _pool is None:
        raise RuntimeError("world database not initialized, call init_db() first")
    return _pool


async def close_db() -> None:
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("postgres_closed")
