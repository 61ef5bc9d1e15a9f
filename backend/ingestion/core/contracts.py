"""Capability contracts consumed by the delegation scraper.

The scraper only knows these two protocols. Concrete adapters live in
`ingestion.core.tzkt_client` (remote) and `ingestion.core.store` (storage);
tests substitute in-memory doubles.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict


class RawSender(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str


class RawDelegation(BaseModel):
    """One delegation operation as the remote source reports it (not yet normalized)."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    timestamp: datetime
    block: str
    sender: RawSender
    level: int
    amount: int = 0


@dataclass(frozen=True, slots=True)
class DelegationRecord:
    """Storage representation of one delegation operation."""

    operation_id: int
    block_timestamp: datetime  # UTC, second precision
    block_hash: str
    sender: str
    level: int
    amount: int  # mutez


class DelegationSource(Protocol):
    async def poll_interval(self) -> timedelta:
        """Recommended polling cadence (the chain's time between blocks)."""
        ...

    async def delegations_since(self, watermark: datetime) -> Sequence[RawDelegation]:
        """Delegations with timestamp >= watermark, sorted by source id.

        The result is NOT guaranteed to be sorted by timestamp.
        """
        ...


class DelegationStore(Protocol):
    async def append(self, batch: Sequence[DelegationRecord]) -> int:
        """Append a batch atomically.

        Idempotent per operation_id: after any number of calls with
        overlapping batches, each operation is present exactly once. Returns
        the number of rows that were not already stored.
        """
        ...

    async def latest_timestamp(self) -> Optional[datetime]:
        """Block timestamp of the most recent stored delegation, None if empty."""
        ...
