"""
Sync Runner - runs domain orchestrators for a tenant and records each run.

This module provides:
- Dependency-ordered execution of a tenant's domains
- One ``sync_runs`` row per domain with counts and error context
- A single terminal error per failed domain; later domains still run
"""

import logging
import time
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import SyncException
from ingestion.context import SyncContext, SyncScope
from ingestion.domains import get_domain_sync, plan_domains
from models.base import SyncStatus
from models.sync_run import SyncRun
from schemas.results import SyncResult, TenantSyncReport

logger = logging.getLogger(__name__)


class SyncRunner:
    """
    Sync orchestrator

    Responsibilities:
    - Run domains in dependency order
    - Record accurate run metrics in ``sync_runs``
    - Wrap unexpected failures with tenant/domain context
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def _start_run(self, ctx: SyncContext, domain: str, scope: SyncScope) -> int:
        run = SyncRun(
            tenant_id=ctx.tenant.id,
            provider=ctx.tenant.provider.value,
            domain=domain,
            scope=scope.school_id or ctx.tenant.school_id,
            status=SyncStatus.RUNNING,
        )
        self.db.add(run)
        await self.db.commit()
        return run.id

    async def _complete_run(
        self,
        run_id: int,
        started: float,
        result: Optional[SyncResult] = None,
        error: Optional[SyncException] = None,
    ) -> None:
        values = {
            "completed_at": datetime.now(timezone.utc),
            "duration_seconds": round(time.monotonic() - started, 3),
        }
        if result is not None:
            values.update(
                status=SyncStatus.PARTIAL if result.skipped or result.rejected else SyncStatus.SUCCESS,
                records_fetched=result.fetched,
                records_persisted=result.persisted,
                records_skipped=result.skipped,
                records_rejected=result.rejected,
                records_propagated=result.propagated,
            )
        if error is not None:
            values.update(
                status=SyncStatus.FAILED,
                error_message=str(error)[:2000],
                error_details=error.to_dict(),
            )

        await self.db.execute(update(SyncRun).where(SyncRun.id == run_id).values(**values))
        await self.db.commit()

    async def run_domain(self, ctx: SyncContext, domain: str, scope: Optional[SyncScope] = None) -> SyncResult:
        """
        Run one domain sync and record it.

        Returns:
            The orchestrator's ``SyncResult``

        Raises:
            SyncException: The terminal error of the domain (unexpected
                errors are wrapped with tenant/domain context)
        """
        scope = scope or SyncScope()
        sync = get_domain_sync(ctx.tenant.provider, domain)

        run_id = await self._start_run(ctx, domain, scope)
        started = time.monotonic()
        logger.info(f"Starting {domain} sync for tenant {ctx.tenant.id} (run {run_id})")

        try:
            result = await sync(ctx, scope)
        except SyncException as e:
            e.context.setdefault("tenant_id", ctx.tenant.id)
            e.context.setdefault("domain", domain)
            await self._record_failure(run_id, started, e)
            raise
        except Exception as e:
            error = SyncException(
                f"Unexpected error during {domain} sync",
                context={"tenant_id": ctx.tenant.id, "domain": domain},
                original_exception=e
            )
            await self._record_failure(run_id, started, error)
            raise error

        await self._complete_run(run_id, started, result=result)
        logger.info(f"Finished {domain} sync for tenant {ctx.tenant.id}: {result.to_dict()}")
        return result

    async def _record_failure(self, run_id: int, started: float, error: SyncException) -> None:
        logger.error(f"Sync run {run_id} failed: {error}", extra={"error_context": error.to_dict()})
        # The failing stage may have left the transaction aborted
        await self.db.rollback()
        await self._complete_run(run_id, started, error=error)

    async def run_tenant(
        self,
        ctx: SyncContext,
        domains: Optional[Iterable[str]] = None,
        scope: Optional[SyncScope] = None,
    ) -> TenantSyncReport:
        """Run the requested (or all supported) domains; a failed domain does not stop the rest."""
        report = TenantSyncReport(tenant_id=ctx.tenant.id)

        for domain in plan_domains(ctx.tenant.provider, domains):
            try:
                report.results[domain] = await self.run_domain(ctx, domain, scope)
            except SyncException as e:
                report.errors[domain] = e.to_dict()

        if report.errors:
            logger.warning(f"Tenant {ctx.tenant.id} finished with failures in: {', '.join(report.errors)}")
        else:
            logger.info(f"Tenant {ctx.tenant.id} sync complete")
        return report
