"""
Per-user JSON record store backing the persistence routes.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowinvest.database.models import Record

logger = logging.getLogger(__name__)

COLLECTIONS = frozenset({"investments", "user_profiles", "portfolio_analyses"})


class RecordStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def save_record(self, collection: str, owner_id: str, record: dict[str, Any]) -> int:
        async with self._session_maker() as session:
            row = Record(collection=collection, owner_id=owner_id, payload=record)
            session.add(row)
            try:
                await session.commit()
            except SQLAlchemyError:
                logger.exception("Failed to save %s record for %s", collection, owner_id)
                await session.rollback()
                raise
            logger.info("Saved %s record %s", collection, row.id)
            return row.id

    async def query_records(self, collection: str, owner_id: str) -> list[dict[str, Any]]:
        """Return the owner's records, newest first, with ``id`` and ``createdAt`` merged in."""
        async with self._session_maker() as session:
            stmt = (
                select(Record)
                .where(Record.collection == collection, Record.owner_id == owner_id)
                .order_by(Record.created_at.desc(), Record.id.desc())
            )
            rows = list(await session.scalars(stmt))

        return [
            {
                **row.payload,
                "id": row.id,
                "createdAt": row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]

    async def delete_record(self, collection: str, owner_id: str, record_id: int) -> bool:
        """Delete one of the owner's records; False when no such record belongs to them."""
        async with self._session_maker() as session:
            result = await session.execute(
                delete(Record).where(
                    Record.collection == collection,
                    Record.owner_id == owner_id,
                    Record.id == record_id,
                )
            )
            await session.commit()
        return bool(result.rowcount)
