"""Data-access layer — thin async wrappers around SQLAlchemy queries."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mindflow.models import SessionSnapshot
from mindflow.storage.database import SessionSnapshotRow, get_session_factory


class BaseRepository:
    """Shared base with session management for all repositories."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory

    def _session(self) -> AsyncSession:
        factory = self._factory or get_session_factory()
        return factory()


class SnapshotRepository(BaseRepository):
    """Upsert / read / delete the persisted snapshot of each live session."""

    async def upsert(self, snapshot: SessionSnapshot) -> None:
        async with self._session() as session:
            row = await session.get(SessionSnapshotRow, snapshot.session_id)
            if row is None:
                row = SessionSnapshotRow(session_id=snapshot.session_id)
                session.add(row)
            row.score = snapshot.score
            row.level = snapshot.level
            row.mode = snapshot.mode.value
            row.entropy = snapshot.entropy
            row.in_flow_band = snapshot.in_flow_band
            row.category = snapshot.category.value
            await session.commit()

    async def get(self, session_id: str) -> SessionSnapshotRow | None:
        async with self._session() as session:
            return await session.get(SessionSnapshotRow, session_id)

    async def list_all(self) -> Sequence[SessionSnapshotRow]:
        async with self._session() as session:
            result = await session.execute(
                select(SessionSnapshotRow).order_by(SessionSnapshotRow.session_id)
            )
            return result.scalars().all()

    async def delete(self, session_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(SessionSnapshotRow).where(SessionSnapshotRow.session_id == session_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0
