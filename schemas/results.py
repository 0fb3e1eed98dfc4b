"""
Result types returned by the sync stages.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class SyncResult:
    """
    Outcome of one domain sync.

    Attributes:
        fetched: Items returned by the provider
        persisted: Rows upserted into the normalized store
        skipped: Persisted rows with at least one unresolved foreign key
        rejected: Items dropped because they had no usable natural key
        propagated: Reporting rows inserted or refreshed
    """

    domain: str
    fetched: int = 0
    persisted: int = 0
    skipped: int = 0
    rejected: int = 0
    propagated: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def add(self, other: "SyncResult") -> "SyncResult":
        self.fetched += other.fetched
        self.persisted += other.persisted
        self.skipped += other.skipped
        self.rejected += other.rejected
        self.propagated += other.propagated
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "fetched": self.fetched,
            "persisted": self.persisted,
            "skipped": self.skipped,
            "rejected": self.rejected,
            "propagated": self.propagated,
            **self.details,
        }


@dataclass(frozen=True)
class PropagationResult:
    inserted: int
    refreshed: int

    @property
    def affected(self) -> int:
        return self.inserted + self.refreshed


@dataclass
class TenantSyncReport:
    """Per-domain results and errors of one tenant run."""

    tenant_id: str
    results: Dict[str, SyncResult] = field(default_factory=dict)
    errors: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def error_for(self, domain: str) -> Optional[Dict[str, Any]]:
        return self.errors.get(domain)
