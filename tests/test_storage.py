"""Tests for snapshot persistence on a temporary SQLite database."""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from mindflow.models import ContextCategory, Mode, SessionSnapshot
from mindflow.storage.database import Base
from mindflow.storage.repository import SnapshotRepository


@pytest.fixture
async def repo(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SnapshotRepository(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


def _snapshot(session_id: str = "tab-1", score: float = 30.0, level: int = 0) -> SessionSnapshot:
    return SessionSnapshot(
        session_id=session_id,
        score=score,
        level=level,
        mode=Mode.STANDARD,
        idle=False,
        deep_reading=False,
        entropy=0.2,
        in_flow_band=False,
        category=ContextCategory.NEWS,
    )


@pytest.mark.asyncio
async def test_upsert_and_get(repo: SnapshotRepository):
    await repo.upsert(_snapshot())
    row = await repo.get("tab-1")
    assert row is not None
    assert row.score == 30.0
    assert row.category == "news"
    assert row.mode == "standard"


@pytest.mark.asyncio
async def test_upsert_overwrites(repo: SnapshotRepository):
    await repo.upsert(_snapshot(score=30.0))
    await repo.upsert(_snapshot(score=55.0, level=1))
    rows = await repo.list_all()
    assert len(rows) == 1
    assert rows[0].score == 55.0
    assert rows[0].level == 1


@pytest.mark.asyncio
async def test_delete(repo: SnapshotRepository):
    await repo.upsert(_snapshot("a"))
    await repo.upsert(_snapshot("b"))
    assert await repo.delete("a") is True
    assert await repo.delete("a") is False
    assert [r.session_id for r in await repo.list_all()] == ["b"]
