"""Tests for the world database pool lifecycle with a mocked asyncpg."""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from hatchlands.config import Settings
from hatchlands.db import connection
from hatchlands.db.connection import close_db, get_pool, init_db


def make_pool(conn):
    @asynccontextmanager
    async def acquire():
        yield conn

    @asynccontextmanager
    async def transaction():
        yield

    conn.transaction = transaction
    pool = MagicMock()
    pool.acquire = acquire
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def settings() -> Settings:
    return Settings(
        postgres_dsn="postgresql://world@localhost/world",
        postgres_pool_min=2,
        postgres_pool_max=4,
    )


@pytest.mark.asyncio
async def test_init_db_applies_schema_and_registers_pool(settings, monkeypatch):
    conn = AsyncMock()
    pool = make_pool(conn)
    create_pool = AsyncMock(return_value=pool)
    monkeypatch.setattr(connection.asyncpg, "create_pool", create_pool)

    assert await init_db(settings) is pool
    assert get_pool() is pool

    kwargs = create_pool.call_args.kwargs
    assert create_pool.call_args.args == ("postgresql://world@localhost/world",)
    assert (kwargs["min_size"], kwargs["max_size"]) == (2, 4)
    assert "CREATE TABLE IF NOT EXISTS spawns" in conn.execute.call_args.args[0]

    await close_db()
    pool.close.assert_awaited_once()
    with pytest.raises(RuntimeError):
        get_pool()


@pytest.mark.asyncio
async def test_failed_schema_closes_pool(settings, monkeypatch):
    conn = AsyncMock()
    conn.execute.side_effect = OSError("connection reset")
    pool = make_pool(conn)
    monkeypatch.setattr(connection.asyncpg, "create_pool", AsyncMock(return_value=pool))

    with pytest.raises(OSError):
        await init_db(settings)

    pool.close.assert_awaited_once()
    with pytest.raises(RuntimeError):
        get_pool()


@pytest.mark.asyncio
async def test_document_codec_is_compact():
    conn = AsyncMock()
    await connection._register_document_codecs(conn)

    assert [call.args[0] for call in conn.set_type_codec.call_args_list] == ["jsonb", "json"]
    encoder = conn.set_type_codec.call_args.kwargs["encoder"]
    assert encoder({"primaryGenes": [1, 2]}) == '{"primaryGenes":[1,2]}'
