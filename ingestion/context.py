"""
Per-tenant wiring of the sync components.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ingestion.auth import ApiKeyAuth, BearerTokenAuth, TokenManager, TokenStore
from ingestion.client import ApiClient
from ingestion.extractors.spreadsheet import SpreadsheetIngestor
from ingestion.loaders.bulk_writer import BulkWriter
from ingestion.loaders.reporting_sync import ReportingSync
from ingestion.loaders.resolver import ReferenceResolver
from ingestion.pagination import PagedRetriever
from ingestion.transformers.normalizer import RosterNormalizer
from ingestion.transport import RetryPolicy
from models.base import ProviderType
from models.roster import OrgUnit
from schemas.tenant import TenantConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncScope:
    """Optional filters for one domain sync."""

    school_id: Optional[str] = None
    academic_year: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class SyncContext:
    """Everything a domain orchestrator needs for one tenant."""

    tenant: TenantConfig
    db: AsyncSession
    client: ApiClient
    retriever: PagedRetriever
    spreadsheets: SpreadsheetIngestor
    writer: BulkWriter
    normalizer: RosterNormalizer = field(default_factory=RosterNormalizer)

    def resolver(self, model, alt_key_column: Optional[str] = None) -> ReferenceResolver:
        return ReferenceResolver(self.db, model, self.tenant.id, alt_key_column=alt_key_column)

    def reporting(self) -> ReportingSync:
        return ReportingSync(self.db, self.tenant.id)

    async def school_scope(self, scope: SyncScope) -> List[str]:
        """
        Schools to sync: the explicit filter, else the tenant's current
        school, else every school already stored for the tenant.
        """
        if scope.school_id:
            return [scope.school_id]
        if self.tenant.school_id:
            return [self.tenant.school_id]

        result = await self.db.execute(
            select(OrgUnit.natural_key)
            .where(OrgUnit.tenant_id == self.tenant.id, OrgUnit.org_type == "school")
            .order_by(OrgUnit.natural_key)
        )
        schools = list(result.scalars().all())
        if not schools:
            logger.warning(f"No schools stored for tenant {self.tenant.id}; sync schools first")
        return schools


def build_context(
    tenant: TenantConfig,
    db: AsyncSession,
    http: httpx.AsyncClient,
    token_store: TokenStore,
) -> SyncContext:
    retry = RetryPolicy()
    if tenant.provider == ProviderType.NEXQUARE:
        auth = BearerTokenAuth(TokenManager(token_store, http, retry))
    else:
        auth = ApiKeyAuth()

    client = ApiClient(tenant, http, auth, retry)
    return SyncContext(
        tenant=tenant,
        db=db,
        client=client,
        retriever=PagedRetriever(client),
        spreadsheets=SpreadsheetIngestor(client),
        writer=BulkWriter(db, tenant.id),
    )
