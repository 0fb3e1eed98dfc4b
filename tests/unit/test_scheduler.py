import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from ingestion.scheduler import SyncScheduler
from schemas.results import TenantSyncReport


def session_maker_mock(session):
    maker = MagicMock()
    maker.return_value.__aenter__.return_value = session
    maker.return_value.__aexit__.return_value = False
    return maker


@pytest.mark.asyncio
async def test_scheduler_initialization(nexquare_tenant):
    scheduler = SyncScheduler(session_maker=MagicMock(), tenants=[nexquare_tenant], interval_minutes=15)
    assert scheduler.scheduler is not None
    assert scheduler.interval_minutes == 15
    assert scheduler.tenants() == [nexquare_tenant]
    assert len(scheduler.token_store) == 0


@pytest.mark.asyncio
async def test_scheduler_job_runs_every_tenant(nexquare_tenant, managebac_tenant):
    session = AsyncMock()
    with patch("ingestion.scheduler.SyncRunner") as mock_runner_cls, \
            patch("ingestion.scheduler.build_context") as mock_build_context:
        mock_runner = MagicMock()
        mock_runner.run_tenant = AsyncMock(side_effect=[
            TenantSyncReport(tenant_id=nexquare_tenant.id),
            TenantSyncReport(tenant_id=managebac_tenant.id, errors={"students": {"message": "boom"}}),
        ])
        mock_runner_cls.return_value = mock_runner

        scheduler = SyncScheduler(
            session_maker=session_maker_mock(session),
            tenants=[nexquare_tenant, managebac_tenant],
        )
        await scheduler.run_sync_job()

        assert mock_runner.run_tenant.await_count == 2
        built_for = [c.args[0] for c in mock_build_context.call_args_list]
        assert built_for == [nexquare_tenant, managebac_tenant]
        # Both tenants share the scheduler's token store
        assert all(c.args[3] is scheduler.token_store for c in mock_build_context.call_args_list)


@pytest.mark.asyncio
async def test_scheduler_job_survives_config_error():
    scheduler = SyncScheduler(session_maker=MagicMock())
    with patch("ingestion.scheduler.load_tenants", side_effect=ValueError("bad file")):
        await scheduler.run_sync_job()


def test_start_registers_interval_job(nexquare_tenant):
    scheduler = SyncScheduler(session_maker=MagicMock(), tenants=[nexquare_tenant], interval_minutes=60)
    with patch.object(scheduler.scheduler, "start") as mock_start:
        scheduler.start()

    job = scheduler.scheduler.get_job("sync_job")
    assert job is not None
    assert job.trigger.interval.total_seconds() == 3600
    mock_start.assert_called_once()
