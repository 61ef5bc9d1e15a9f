"""Delegation repository (read-only)."""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import Select, extract, func, select

from app.models.delegation import Delegation
from app.repositories.base import BaseRepository
from ingestion.core.contracts import DelegationRecord


class DelegationRepository(BaseRepository):
    """Read access to stored delegations, most recent block first."""

    async def list_delegations(self, year: Optional[int] = None) -> Sequence[DelegationRecord]:
        stmt: Select = select(Delegation)
        if year is not None:
            # Year of the UTC timestamp, whatever the session time zone.
            stmt = stmt.where(extract("year", func.timezone("UTC", Delegation.block_timestamp)) == year)
        stmt = stmt.order_by(Delegation.block_timestamp.desc())

        rows = (await self._execute(stmt)).scalars().all()
        return [_to_record(r) for r in rows]


def _to_record(m: Delegation) -> DelegationRecord:
    return DelegationRecord(
        operation_id=int(m.operation_id),
        block_timestamp=m.block_timestamp,
        block_hash=m.block_hash,
        sender=m.sender,
        level=int(m.level),
        amount=int(m.amount),
    )
