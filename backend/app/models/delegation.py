"""Delegation model.

One row per delegation operation observed on the Tezos chain. Rows are
append-only: the ingestion store inserts with ON CONFLICT DO NOTHING on the
operation id, so replaying an overlapping window never duplicates or rewrites
an entry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.core.base import Base, ensure_utc


class Delegation(Base):
    __tablename__ = "delegation"

    # TzKT operation id; unique across the chain.
    operation_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    block_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    block_hash: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    # Mutez (1 tez = 10^6 mutez).
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_delegation_block_timestamp", "block_timestamp"),
    )

    @validates("block_timestamp")
    def _validate_utc(self, key: str, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(key, value)
