import logging
from typing import Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.database import async_session_maker
from ingestion.auth import TokenStore
from ingestion.client import build_http_client
from ingestion.context import SyncScope, build_context
from ingestion.runner import SyncRunner
from schemas.results import TenantSyncReport
from schemas.tenant import TenantConfig, load_tenants

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        tenants: Optional[List[TenantConfig]] = None,
        interval_minutes: Optional[int] = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.SessionLocal = session_maker or async_session_maker
        self._tenants = tenants
        self.interval_minutes = interval_minutes or settings.SYNC_INTERVAL_MINUTES
        # Tokens outlive a single job
        self.token_store = TokenStore()

    def tenants(self) -> List[TenantConfig]:
        if self._tenants is not None:
            return self._tenants
        return load_tenants(settings.TENANTS_FILE)

    async def sync_tenants(
        self,
        tenants: Iterable[TenantConfig],
        domains: Optional[Iterable[str]] = None,
        scope: Optional[SyncScope] = None,
    ) -> List[TenantSyncReport]:
        """Sync tenants one after another, each in its own session."""
        reports = []
        async with build_http_client() as http:
            for tenant in tenants:
                async with self.SessionLocal() as session:
                    ctx = build_context(tenant, session, http, self.token_store)
                    reports.append(await SyncRunner(session).run_tenant(ctx, domains, scope))
        return reports

    async def run_sync_job(self):
        """Job to sync every configured tenant"""
        logger.info("Scheduler: Starting sync job")
        try:
            reports = await self.sync_tenants(self.tenants())
        except Exception as e:
            logger.error(f"Scheduler: sync job failed - {e}")
            return

        failed = [report.tenant_id for report in reports if not report.succeeded]
        if failed:
            logger.warning(f"Scheduler: sync job finished with failures for {', '.join(failed)}")
        else:
            logger.info(f"Scheduler: sync job finished for {len(reports)} tenant(s)")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="sync_job",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")
