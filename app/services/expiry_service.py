"""
Expiry sweep: scheduled reconciliation of match expiry state.

Flags every lapsed-but-open match as expired and, when asked to clean,
purges message history of expired matches. Safe to re-run with any `now`:
a second run changes nothing the first one already changed.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete
from app.models.match import Match, MatchMessage
from app.services.match_service import MatchService
from app.core.config import settings
from app.core.store_errors import translate_store_errors
from app.utils.clock import now_ms
from app.config.constants import EXPIRY_SWEEP_BATCH_SIZE

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    scanned_count: int
    expired_count: int
    cleaned_message_count: int
    cutoff_timestamp: int
    now: int
    failed_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "scannedCount": data["scanned_count"],
            "expiredCount": data["expired_count"],
            "cleanedMessageCount": data["cleaned_message_count"],
            "cutoffTimestamp": data["cutoff_timestamp"],
            "now": data["now"],
            "failedCount": data["failed_count"],
        }


async def run_expiry_once(
    session: AsyncSession,
    now: Optional[int] = None,
    clean: bool = False,
    window_ms: Optional[int] = None,
    retention_ms: int = 0,
) -> SweepSummary:
    """
    One pass of the sweep.

    Args:
        session: Database session
        now: Reference time in epoch ms (defaults to the current time)
        clean: Also delete message history of expired matches
        window_ms: Match window (defaults to settings)
        retention_ms: Extra time past the window before messages are purged

    Returns:
        SweepSummary of what this pass scanned and changed
    """
    now = now_ms() if now is None else now
    window_ms = settings.match_window_ms if window_ms is None else window_ms
    cutoff = now - window_ms

    match_service = MatchService(session, clock=lambda: now, window_ms=window_ms)
    scanned_count = 0
    expired_count = 0
    failed_count = 0
    last_id = None

    # Keyset pages over id, so failed or already-flagged rows never repeat
    while True:
        stmt = (
            select(Match.id)
            .where(Match.expired == False, Match.created_at <= cutoff)
            .order_by(Match.id)
            .limit(EXPIRY_SWEEP_BATCH_SIZE)
        )
        if last_id is not None:
            stmt = stmt.where(Match.id > last_id)
        async with translate_store_errors("expiry_scan"):
            result = await session.execute(stmt)
            batch = list(result.scalars().all())
        if not batch:
            break

        for match_id in batch:
            try:
                if await match_service.flag_expired(match_id):
                    expired_count += 1
            except Exception as e:
                # Stragglers are picked up by the next run
                failed_count += 1
                logger.error(f"Expiry sweep failed to flag match {match_id}: {e}")
                await session.rollback()

        scanned_count += len(batch)
        last_id = batch[-1]
        logger.debug(f"Expiry sweep progress: {scanned_count} scanned, {expired_count} expired")
        if len(batch) < EXPIRY_SWEEP_BATCH_SIZE:
            break

    cleaned_message_count = 0
    if clean:
        cleaned, failed = await _purge_expired_messages(session, now, cutoff - retention_ms)
        cleaned_message_count += cleaned
        failed_count += failed

    summary = SweepSummary(
        scanned_count=scanned_count,
        expired_count=expired_count,
        cleaned_message_count=cleaned_message_count,
        cutoff_timestamp=cutoff,
        now=now,
        failed_count=failed_count,
    )
    logger.info(f"Expiry sweep finished: {summary.to_dict()}")
    return summary


async def _purge_expired_messages(session: AsyncSession, now: int, purge_cutoff: int):
    """Delete messages of expired matches not yet purged. Returns (deleted, failed)."""
    async with translate_store_errors("expiry_purge_scan"):
        stmt = select(Match.id).where(
            Match.expired == True,
            Match.messages_purged_at.is_(None),
            Match.created_at <= purge_cutoff,
        )
        result = await session.execute(stmt)
        match_ids = list(result.scalars().all())

    deleted = 0
    failed = 0
    for match_id in match_ids:
        try:
            async with translate_store_errors("expiry_purge"):
                stamp = await session.execute(
                    update(Match)
                    .where(Match.id == match_id, Match.messages_purged_at.is_(None))
                    .values(messages_purged_at=now)
                    .execution_options(synchronize_session=False)
                )
                if stamp.rowcount == 0:
                    await session.rollback()
                    continue
                removed = await session.execute(
                    delete(MatchMessage)
                    .where(MatchMessage.match_id == match_id)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            deleted += removed.rowcount or 0
        except Exception as e:
            failed += 1
            logger.error(f"Expiry sweep failed to purge messages of match {match_id}: {e}")
            await session.rollback()
    return deleted, failed
