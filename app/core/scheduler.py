from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.redis import RedisJobStore
from app.core.config import settings
from app.core.store_errors import with_store_retry
from app.config.constants import (
    EXPIRY_SWEEP_JOB_ID,
    RECONNECT_HOUSEKEEPING_JOB_ID,
    RECONNECT_HOUSEKEEPING_INTERVAL_MINUTES,
)
import logging
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def redis_jobstore_kwargs(redis_url: str) -> dict:
    """Split a redis:// URL into the kwargs RedisJobStore passes on to Redis()."""
    parsed = urlparse(redis_url)
    db = 0
    if parsed.path and parsed.path != '/':
        try:
            db = int(parsed.path.lstrip('/'))
        except ValueError:
            logger.warning(f"Ignoring non-numeric Redis db in {parsed.path!r}, using 0")
    return {
        'host': parsed.hostname or 'localhost',
        'port': parsed.port or 6379,
        'password': parsed.password,
        'db': db,
    }


jobstores = {
    'default': RedisJobStore(
        jobs_key='venue_match:jobs',
        run_times_key='venue_match:run_times',
        **redis_jobstore_kwargs(str(settings.REDIS_URL))
    )
}

scheduler = AsyncIOScheduler(jobstores=jobstores, timezone="UTC")


async def scheduled_expiry_job():
    """
    Periodic expiry sweep. Runs every EXPIRY_SWEEP_INTERVAL_MINUTES.
    Per-match failures are handled inside the sweep; a failure of the whole
    pass is retried with backoff, then logged and left to the next tick.
    """
    logger.info("Starting scheduled expiry sweep...")
    from app.db.session import AsyncSessionLocal
    from app.services.expiry_service import run_expiry_once

    @with_store_retry
    async def sweep():
        async with AsyncSessionLocal() as session:
            return await run_expiry_once(
                session,
                clean=settings.EXPIRY_SWEEP_CLEAN,
                retention_ms=settings.message_retention_ms,
            )

    try:
        summary = await sweep()
        logger.info(f"Scheduled expiry sweep result: {summary.to_dict()}")
        return summary
    except Exception as e:
        logger.exception(f"Scheduled expiry sweep failed: {e}")


async def scheduled_reconnect_job():
    """
    Periodic reconnect housekeeping: drop lapsed requests and complete
    pairs that have become co-located since they both asked.
    """
    from app.db.session import AsyncSessionLocal
    from app.services.reconnect_service import ReconnectService
    from app.infrastructure.clients.checkin import build_checkin_directory

    @with_store_retry
    async def housekeeping():
        async with AsyncSessionLocal() as session:
            service = ReconnectService(session, build_checkin_directory())
            return await service.process_pending_requests()

    try:
        return await housekeeping()
    except Exception as e:
        logger.exception(f"Scheduled reconnect housekeeping failed: {e}")


async def start_scheduler():
    """Start the scheduler."""
    if not scheduler.running:
        scheduler.add_job(
            scheduled_expiry_job,
            'interval',
            minutes=settings.EXPIRY_SWEEP_INTERVAL_MINUTES,
            id=EXPIRY_SWEEP_JOB_ID,
            replace_existing=True
        )
        scheduler.add_job(
            scheduled_reconnect_job,
            'interval',
            minutes=RECONNECT_HOUSEKEEPING_INTERVAL_MINUTES,
            id=RECONNECT_HOUSEKEEPING_JOB_ID,
            replace_existing=True
        )

        scheduler.start()
        logger.info("APScheduler started.")

async def shutdown_scheduler():
    """Shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler shut down.")
