"""
Tests for scheduled expiry sweep and reconnect housekeeping.
"""
import pytest
from unittest.mock import MagicMock, AsyncMock, patch
from app.core.scheduler import (
    scheduled_expiry_job,
    scheduled_reconnect_job,
    start_scheduler,
    shutdown_scheduler,
    redis_jobstore_kwargs,
)
from app.core.config import settings
from app.services.expiry_service import SweepSummary
from app.core.exceptions import StoreUnavailableError
from app.config.constants import EXPIRY_SWEEP_JOB_ID, RECONNECT_HOUSEKEEPING_JOB_ID


@pytest.mark.asyncio
async def test_scheduled_expiry_job_runs_sweep(mock_session):
    """Test that the scheduled job opens a session and runs one sweep."""
    summary = SweepSummary(
        scanned_count=2, expired_count=2, cleaned_message_count=0, cutoff_timestamp=1, now=2
    )

    with patch("app.db.session.AsyncSessionLocal", return_value=mock_session), \
         patch("app.services.expiry_service.run_expiry_once",
               AsyncMock(return_value=summary)) as mock_sweep:

        result = await scheduled_expiry_job()

        assert result is summary
        mock_sweep.assert_awaited_once()
        assert mock_sweep.await_args.args[0] is mock_session


@pytest.mark.asyncio
async def test_scheduled_expiry_job_passes_clean_setting(mock_session, monkeypatch):
    """Test that the configured clean flag reaches the sweep."""
    monkeypatch.setattr(settings, "EXPIRY_SWEEP_CLEAN", True)
    summary = SweepSummary(
        scanned_count=0, expired_count=0, cleaned_message_count=0, cutoff_timestamp=1, now=2
    )

    with patch("app.db.session.AsyncSessionLocal", return_value=mock_session), \
         patch("app.services.expiry_service.run_expiry_once",
               AsyncMock(return_value=summary)) as mock_sweep:

        await scheduled_expiry_job()

        assert mock_sweep.await_args.kwargs["clean"] is True


@pytest.mark.asyncio
async def test_scheduled_expiry_job_swallows_failures(mock_session):
    """Test that a failing sweep is logged and retried on the next tick."""
    with patch("app.db.session.AsyncSessionLocal", return_value=mock_session), \
         patch("app.services.expiry_service.run_expiry_once",
               AsyncMock(side_effect=RuntimeError("db down"))):

        result = await scheduled_expiry_job()

        assert result is None


@pytest.mark.asyncio
async def test_scheduled_reconnect_job(mock_session):
    """Test that reconnect housekeeping runs through the service."""
    with patch("app.db.session.AsyncSessionLocal", return_value=mock_session), \
         patch("app.services.reconnect_service.ReconnectService.process_pending_requests",
               AsyncMock(return_value={"discarded": 1, "completed": 0, "waiting": 0})) as mock_process:

        result = await scheduled_reconnect_job()

        mock_process.assert_awaited_once()
        assert result["discarded"] == 1


@pytest.mark.asyncio
async def test_start_scheduler_registers_jobs(mock_scheduler):
    """Test that both periodic jobs are registered and the scheduler starts."""
    await start_scheduler()

    job_ids = [call.kwargs["id"] for call in mock_scheduler.add_job.call_args_list]
    assert job_ids == [EXPIRY_SWEEP_JOB_ID, RECONNECT_HOUSEKEEPING_JOB_ID]
    assert all(call.kwargs["replace_existing"] for call in mock_scheduler.add_job.call_args_list)
    assert mock_scheduler.add_job.call_args_list[0].kwargs["minutes"] == 60
    mock_scheduler.start.assert_called_once()


@pytest.mark.asyncio
async def test_start_scheduler_is_noop_when_running(mock_scheduler):
    mock_scheduler.running = True

    await start_scheduler()

    mock_scheduler.add_job.assert_not_called()
    mock_scheduler.start.assert_not_called()


@pytest.mark.asyncio
async def test_shutdown_scheduler(mock_scheduler):
    mock_scheduler.running = True

    await shutdown_scheduler()

    mock_scheduler.shutdown.assert_called_once()


@pytest.mark.asyncio
async def test_scheduled_expiry_job_retries_store_faults(mock_session):
    """Test that a transient store fault is retried before giving up."""
    summary = SweepSummary(
        scanned_count=1, expired_count=1, cleaned_message_count=0, cutoff_timestamp=1, now=2
    )

    with patch("app.db.session.AsyncSessionLocal", return_value=mock_session), \
         patch("app.core.store_errors.asyncio.sleep", AsyncMock()), \
         patch("app.services.expiry_service.run_expiry_once",
               AsyncMock(side_effect=[StoreUnavailableError(), summary])) as mock_sweep:

        result = await scheduled_expiry_job()

        assert result is summary
        assert mock_sweep.await_count == 2


def test_redis_jobstore_kwargs():
    assert redis_jobstore_kwargs("redis://:secret@cache.local:6380/2") == {
        "host": "cache.local",
        "port": 6380,
        "password": "secret",
        "db": 2,
    }
    assert redis_jobstore_kwargs("redis://localhost")["db"] == 0
