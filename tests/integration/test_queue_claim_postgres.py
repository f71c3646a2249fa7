"""
Claim semantics against a real PostgreSQL server.

Set TEST_DATABASE_URL to a disposable database to run these. Each test works
in its own schema, which is dropped afterwards.
"""

import asyncio
import os
import uuid

import psycopg
import pytest
import pytest_asyncio
from psycopg import sql
from psycopg.conninfo import make_conninfo

from trackme.db import pool as pool_module
from trackme.db.pool import DatabasePoolManager
from trackme.features.subscription_discovery.queue import ParseQueue

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL is not set")

QUEUE_PARSE_DDL = """
    CREATE TABLE queue_parse (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        scan_job_id BIGINT,
        message_id TEXT NOT NULL,
        subject TEXT,
        snippet TEXT,
        sender TEXT,
        message_date TIMESTAMPTZ,
        status TEXT NOT NULL DEFAULT 'pending',
        worker_id TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    )
"""


@pytest_asyncio.fixture
async def schema_url():
    schema = f"claim_test_{uuid.uuid4().hex[:8]}"
    async with await psycopg.AsyncConnection.connect(TEST_DATABASE_URL, autocommit=True) as conn:
        await conn.execute(sql.SQL("CREATE SCHEMA {}").format(sql.Identifier(schema)))

    yield make_conninfo(TEST_DATABASE_URL, options=f"-c search_path={schema}")

    async with await psycopg.AsyncConnection.connect(TEST_DATABASE_URL, autocommit=True) as conn:
        await conn.execute(sql.SQL("DROP SCHEMA {} CASCADE").format(sql.Identifier(schema)))


@pytest_asyncio.fixture
async def parse_table(schema_url, monkeypatch):
    """Empty queue_parse table with the shared pool pointed at it."""
    async with await psycopg.AsyncConnection.connect(schema_url, autocommit=True) as conn:
        await conn.execute(QUEUE_PARSE_DDL)

    monkeypatch.setattr(pool_module.settings, "SUPABASE_DB_URL", schema_url)
    monkeypatch.setattr(pool_module.settings, "environment", "test")
    monkeypatch.setattr(pool_module.settings, "DB_POOL_MIN_SIZE", 1)
    monkeypatch.setattr(pool_module.settings, "DB_POOL_MAX_SIZE", 10)

    manager = DatabasePoolManager(application_name="trackme-claim-test")
    monkeypatch.setattr(pool_module, "db_pool", manager)
    await manager.initialize()

    yield schema_url

    await manager.close()


async def _seed(conninfo: str, count: int) -> list[int]:
    async with await psycopg.AsyncConnection.connect(conninfo, autocommit=True) as conn:
        cur = await conn.execute(
            """
            INSERT INTO queue_parse (user_id, message_id, created_at)
            SELECT 'user-123', 'msg-' || n, NOW() - make_interval(secs => %s - n)
            FROM generate_series(1, %s) AS n
            RETURNING id
            """,
            (count, count),
        )
        return sorted(row[0] for row in await cur.fetchall())


async def _statuses(conninfo: str) -> dict[str, int]:
    async with await psycopg.AsyncConnection.connect(conninfo) as conn:
        cur = await conn.execute("SELECT status, COUNT(*) FROM queue_parse GROUP BY status")
        return {status: count for status, count in await cur.fetchall()}


@pytest.mark.asyncio
@pytest.mark.parametrize("seeded", [7, 30])
async def test_concurrent_claims_never_share_a_row(parse_table, seeded):
    await _seed(parse_table, seeded)
    queue = ParseQueue(default_batch_size=3)

    batches = await asyncio.gather(*(queue.claim(f"parse-worker-{n:08x}", 3) for n in range(8)))

    claimed = [job.id for batch in batches for job in batch]
    assert len(claimed) == len(set(claimed))
    assert len(claimed) == min(seeded, 8 * 3)
    assert all(job.status == "processing" and job.attempts == 1 for b in batches for job in b)
    assert (await _statuses(parse_table)).get("processing") == len(claimed)


@pytest.mark.asyncio
async def test_competing_workers_drain_every_row_exactly_once(parse_table):
    seeded = await _seed(parse_table, 60)
    queue = ParseQueue()
    claimed_by: dict[int, str] = {}
    duplicates = []

    async def drain(worker_id: str) -> None:
        while jobs := await queue.claim(worker_id, 4):
            for job in jobs:
                if job.id in claimed_by:
                    duplicates.append(job.id)
                claimed_by[job.id] = worker_id

    await asyncio.gather(*(drain(f"parse-worker-{n:08x}") for n in range(6)))

    assert duplicates == []
    assert sorted(claimed_by) == seeded


@pytest.mark.asyncio
async def test_claim_skips_rows_locked_by_another_session(parse_table):
    ids = await _seed(parse_table, 5)
    locked = ids[:2]

    async with await psycopg.AsyncConnection.connect(parse_table) as holder:
        await holder.execute("SELECT id FROM queue_parse WHERE id = ANY(%s) FOR UPDATE", (locked,))

        jobs = await asyncio.wait_for(ParseQueue().claim("parse-worker-0000000a", 5), 10)

        await holder.rollback()

    assert [job.id for job in jobs] == ids[2:]


@pytest.mark.asyncio
async def test_claim_returns_oldest_first(parse_table):
    ids = await _seed(parse_table, 4)

    jobs = await ParseQueue().claim("parse-worker-0000000b", 2)

    assert [job.id for job in jobs] == ids[:2]
    assert all(job.worker_id == "parse-worker-0000000b" for job in jobs)
