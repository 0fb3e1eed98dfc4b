"""
Script to run a sync for configured tenants, or start the periodic scheduler
"""

import argparse
import asyncio
import sys
import os
import logging
from datetime import date

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import engine
from core.exceptions import ConfigurationError
from core.logging import setup_logging
from ingestion.context import SyncScope
from ingestion.domains import DOMAIN_ORDER
from ingestion.scheduler import SyncScheduler
from schemas.tenant import load_tenants

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync school-information providers into the roster store")
    parser.add_argument("--tenant", action="append", help="Tenant id to sync (repeatable); default all")
    parser.add_argument("--domains", help=f"Comma-separated domains: {','.join(DOMAIN_ORDER)}")
    parser.add_argument("--school", help="Restrict to one school id")
    parser.add_argument("--academic-year", help="Academic year filter")
    parser.add_argument("--start-date", type=date.fromisoformat, help="Attendance window start (YYYY-MM-DD)")
    parser.add_argument("--end-date", type=date.fromisoformat, help="Attendance window end (YYYY-MM-DD)")
    parser.add_argument("--schedule", action="store_true", help="Keep running and sync on an interval")
    return parser.parse_args(argv)


async def run_sync(args) -> int:
    """Run the requested sync; returns the process exit code"""
    try:
        tenants = load_tenants(settings.TENANTS_FILE)
    except ConfigurationError as e:
        logger.error(f"Cannot load tenants: {e}")
        return 1

    if args.tenant:
        tenants = [tenant for tenant in tenants if tenant.id in set(args.tenant)]
        if not tenants:
            logger.warning("No matching tenants configured. Skipping sync.")
            return 1

    domains = [d.strip() for d in args.domains.split(",") if d.strip()] if args.domains else None
    scope = SyncScope(
        school_id=args.school,
        academic_year=args.academic_year,
        start_date=args.start_date,
        end_date=args.end_date,
    )

    scheduler = SyncScheduler(tenants=tenants)
    if args.schedule:
        scheduler.start()
        await scheduler.run_sync_job()
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.stop()
            await engine.dispose()

    try:
        reports = await scheduler.sync_tenants(tenants, domains, scope)
    except ValueError as e:
        logger.error(str(e))
        return 2
    finally:
        await engine.dispose()

    for report in reports:
        for domain, result in report.results.items():
            logger.info(f"{report.tenant_id}/{domain}: {result.to_dict()}")
        for domain, error in report.errors.items():
            logger.error(f"{report.tenant_id}/{domain} failed: {error.get('message')}")

    return 0 if all(report.succeeded for report in reports) else 1


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(run_sync(parse_args())))
