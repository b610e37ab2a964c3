"""
Store-backed rate limiting for user actions (likes, messages, reconnects...).

Counters live in the shared database keyed by (user_id, action) with a
fixed window that resets once `window_reset_at` passes, so limits hold
across restarts and across service instances.
"""
import math
import logging
from typing import Dict, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from app.models.rate_limit import RateLimitCounter
from app.core.exceptions import RateLimitedError
from app.core.store_errors import translate_store_errors
from app.utils.clock import Clock, now_ms
from app.config.constants import RATE_LIMITS

logger = logging.getLogger(__name__)


class RateLimitService:
    """
    Fixed-window limiter.

    Each action maps to (max_requests, window_seconds). Actions without a
    configured limit are allowed.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = now_ms,
        limits: Optional[Dict[str, Tuple[int, int]]] = None,
    ):
        self.session = session
        self.clock = clock
        self.limits = dict(RATE_LIMITS if limits is None else limits)

    async def _get_counter(self, user_id: str, action: str) -> Optional[RateLimitCounter]:
        stmt = (
            select(RateLimitCounter)
            .where(RateLimitCounter.user_id == user_id, RateLimitCounter.action == action)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def check_rate_limit(self, user_id: str, action: str) -> Tuple[bool, int]:
        """
        Count one attempt of `action` by `user_id`.

        Returns:
            Tuple of (is_allowed, seconds_until_reset)
        """
        config = self.limits.get(action)
        if not config:
            logger.warning(f"No rate limit config found for action '{action}'")
            return True, 0

        max_requests, window_seconds = config
        window_ms = window_seconds * 1000
        now = self.clock()

        async with translate_store_errors("check_rate_limit"):
            for _ in range(2):
                # Lapsed window: start a new one with this attempt
                result = await self.session.execute(
                    update(RateLimitCounter)
                    .where(
                        RateLimitCounter.user_id == user_id,
                        RateLimitCounter.action == action,
                        RateLimitCounter.window_reset_at <= now,
                    )
                    .values(count=1, window_reset_at=now + window_ms)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    result = await self.session.execute(
                        update(RateLimitCounter)
                        .where(
                            RateLimitCounter.user_id == user_id,
                            RateLimitCounter.action == action,
                            RateLimitCounter.window_reset_at > now,
                            RateLimitCounter.count < max_requests,
                        )
                        .values(count=RateLimitCounter.count + 1)
                        .execution_options(synchronize_session=False)
                    )
                if result.rowcount > 0:
                    await self.session.commit()
                    return True, 0

                counter = await self._get_counter(user_id, action)
                if counter is None:
                    self.session.add(RateLimitCounter(
                        user_id=user_id,
                        action=action,
                        count=1,
                        window_reset_at=now + window_ms,
                    ))
                    try:
                        await self.session.commit()
                    except IntegrityError:
                        # Another request created the counter first
                        await self.session.rollback()
                        continue
                    return True, 0

                await self.session.rollback()
                seconds_until_reset = max(1, math.ceil((counter.window_reset_at - now) / 1000))
                logger.warning(
                    f"Rate limit exceeded for user {user_id} action '{action}'. Wait time: {seconds_until_reset}s"
                )
                return False, seconds_until_reset

        return True, 0

    async def enforce(self, user_id: str, action: str) -> None:
        """Count an attempt and raise RateLimitedError when over the limit."""
        allowed, wait_time = await self.check_rate_limit(user_id, action)
        if not allowed:
            raise RateLimitedError(action, wait_time)

    async def get_remaining_requests(self, user_id: str, action: str) -> int:
        config = self.limits.get(action)
        if not config:
            return 0
        max_requests, _ = config
        async with translate_store_errors("get_remaining_requests"):
            counter = await self._get_counter(user_id, action)
        if counter is None or counter.window_reset_at <= self.clock():
            return max_requests
        return max(0, max_requests - counter.count)

    async def reset(self, user_id: str, action: str) -> None:
        async with translate_store_errors("reset_rate_limit"):
            await self.session.execute(
                delete(RateLimitCounter).where(
                    RateLimitCounter.user_id == user_id,
                    RateLimitCounter.action == action,
                )
            )
            await self.session.commit()
