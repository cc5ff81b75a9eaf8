"""
Tests for the request session dependency and table creation.
"""

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from hoa_courts.database import db
from hoa_courts.database.models import HOA


async def _description(db_session, hoa_id):
    result = await db_session.execute(select(HOA.description).where(HOA.id == hoa_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_request_session_commits_on_success(db_session, hoa):
    hoa_id = hoa["hoa"]["id"]
    sessions = db.get_db_session()
    session = await sessions.__anext__()
    (await session.get(HOA, hoa_id)).description = "Lights until 10pm"

    with pytest.raises(StopAsyncIteration):
        await sessions.__anext__()

    assert await _description(db_session, hoa_id) == "Lights until 10pm"


@pytest.mark.asyncio
async def test_request_session_rolls_back_when_handler_raises(db_session, hoa):
    hoa_id = hoa["hoa"]["id"]
    before = await _description(db_session, hoa_id)
    sessions = db.get_db_session()
    session = await sessions.__anext__()
    (await session.get(HOA, hoa_id)).description = "never saved"
    await session.flush()

    with pytest.raises(RuntimeError):
        await sessions.athrow(RuntimeError("handler failed"))

    assert await _description(db_session, hoa_id) == before


@pytest.mark.asyncio
async def test_init_database_creates_every_table(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fresh.db'}", poolclass=NullPool)
    try:
        await db.init_database(engine)
        await db.init_database(engine)

        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await engine.dispose()

    assert set(db.Base.metadata.tables) <= set(tables)
    assert "bookings" in tables
