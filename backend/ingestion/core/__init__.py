"""Ingestion core primitives.

Incremental delegation ingestion:
- TzKT client (remote source) and PostgreSQL store (durable sink)
- Scraper loop owning the cursor and the retry policy
- Append-only, idempotent per operation id
"""

from ingestion.core.contracts import (
    DelegationRecord,
    DelegationSource,
    DelegationStore,
    RawDelegation,
    RawSender,
)
from ingestion.core.errors import (
    ConfigError,
    FetchError,
    IngestionError,
    InsertError,
    ScraperCancelled,
)
from ingestion.core.scraper import (
    DelegationScraper,
    latest_block_timestamp,
    normalize_delegation,
    normalize_delegations,
)
from ingestion.core.tzkt_client import TzktClient

__all__ = [
    "ConfigError",
    "DelegationRecord",
    "DelegationScraper",
    "DelegationSource",
    "DelegationStore",
    "FetchError",
    "IngestionError",
    "InsertError",
    "RawDelegation",
    "RawSender",
    "ScraperCancelled",
    "TzktClient",
    "latest_block_timestamp",
    "normalize_delegation",
    "normalize_delegations",
]
