"""Schemas for the delegations endpoint.

Every field is a string, including the numeric ones: mutez amounts can
exceed the safe integer range of JSON consumers.
"""

from __future__ import annotations

from datetime import timezone

from pydantic import BaseModel, Field

from ingestion.core.contracts import DelegationRecord


UTC = timezone.utc


class DelegationItem(BaseModel):
    timestamp: str = Field(..., description="Block timestamp, RFC3339 UTC")
    amount: str = Field(..., description="Delegated amount in mutez")
    delegator: str = Field(..., description="Sender address")
    level: str = Field(..., description="Block height")

    @classmethod
    def from_record(cls, record: DelegationRecord) -> "DelegationItem":
        return cls(
            timestamp=record.block_timestamp.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            amount=str(record.amount),
            delegator=record.sender,
            level=str(record.level),
        )


class DelegationsResponse(BaseModel):
    data: list[DelegationItem] = Field(default_factory=list)
