"""PostgreSQL delegation store (ingestion write path).

This is the ONLY writer of the `delegation` table.
- Append-only: rows are inserted, never updated or deleted
- Idempotent: INSERT ... ON CONFLICT (operation_id) DO NOTHING
- Atomic: one transaction per batch, all-or-nothing
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models.delegation import Delegation
from ingestion.core.contracts import DelegationRecord
from ingestion.core.errors import InsertError


UTC = timezone.utc


def _row(record: DelegationRecord) -> dict[str, object]:
    return {
        "operation_id": record.operation_id,
        "block_timestamp": record.block_timestamp,
        "block_hash": record.block_hash,
        "sender": record.sender,
        "level": record.level,
        "amount": record.amount,
    }


class PostgresDelegationStore:
    """`DelegationStore` over a SQLAlchemy session factory.

    Blocking database work runs in a worker thread so the shared event loop
    keeps serving API requests during an append.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def append_sync(self, batch: Sequence[DelegationRecord]) -> int:
        if not batch:
            return 0

        stmt = (
            pg_insert(Delegation)
            .values([_row(r) for r in batch])
            .on_conflict_do_nothing(index_elements=[Delegation.operation_id])
            .returning(Delegation.operation_id)
        )
        try:
            with self._session_factory() as session, session.begin():
                inserted = session.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            raise InsertError(f"append of {len(batch)} delegation(s) failed: {type(e).__name__}") from e
        return len(inserted)

    def latest_timestamp_sync(self) -> Optional[datetime]:
        with self._session_factory() as session:
            latest = session.execute(select(func.max(Delegation.block_timestamp))).scalar_one_or_none()
        if latest is None:
            return None
        # Column is written UTC-only; naive means UTC.
        if latest.tzinfo is None:
            latest = latest.replace(tzinfo=UTC)
        return latest.astimezone(UTC)

    async def append(self, batch: Sequence[DelegationRecord]) -> int:
        return await asyncio.to_thread(self.append_sync, batch)

    async def latest_timestamp(self) -> Optional[datetime]:
        return await asyncio.to_thread(self.latest_timestamp_sync)
