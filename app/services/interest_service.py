import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, or_
from sqlalchemy.exc import IntegrityError
from app.models.interest import Interest
from app.services.match_service import MatchService
from app.services.rate_limit_service import RateLimitService
from app.core.exceptions import InvalidRequestError
from app.core.store_errors import translate_store_errors
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

LIKE_ACTION = "like"


@dataclass(frozen=True)
class InterestResult:
    match_created: bool
    match_id: Optional[uuid.UUID] = None


class InterestService:
    """
    Ledger of one-directional interests. Detects the mirror fact and hands
    the pair to MatchService.create_match, which settles concurrent mirrors.
    """

    def __init__(
        self,
        session: AsyncSession,
        rate_limiter: Optional[RateLimitService] = None,
        clock: Clock = now_ms,
        match_service: Optional[MatchService] = None,
    ):
        self.session = session
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.match_service = match_service or MatchService(session, clock=clock)

    async def record_interest(
        self,
        from_user_id: str,
        to_user_id: str,
        venue_id: str,
        venue_name: Optional[str] = None,
    ) -> InterestResult:
        """
        Record "from is interested in to at venue" and create a match when an
        unconsumed mirror interest exists.

        Re-recording the same interest is a no-op and reports the match the
        pair's facts already produced, even once that match has expired. A
        lapsed pair gets a new match only through reconnect. When both users
        like each other at the same moment, exactly one call creates the
        match; the other returns match_created=False with the same match id.
        """
        if from_user_id == to_user_id:
            raise InvalidRequestError(
                "Interest in oneself",
                user_message="You can't like yourself.",
            )

        if self.rate_limiter is not None:
            await self.rate_limiter.enforce(from_user_id, LIKE_ACTION)

        await self._write_interest(from_user_id, to_user_id, venue_id)

        own = await self.get_interest(from_user_id, to_user_id, venue_id)
        mirror = await self.get_interest(to_user_id, from_user_id, venue_id)
        if mirror is None:
            return InterestResult(match_created=False)

        consumed_by = (own and own.consumed_match_id) or mirror.consumed_match_id
        if consumed_by is not None:
            return InterestResult(match_created=False, match_id=consumed_by)

        match, created = await self.match_service.create_match(
            from_user_id, to_user_id, venue_id, venue_name
        )
        await self._consume_pair(from_user_id, to_user_id, venue_id, match.id)
        if created:
            logger.info(f"Mutual interest {from_user_id} <-> {to_user_id} at {venue_id}: match {match.id}")
        return InterestResult(match_created=created, match_id=match.id)

    async def _consume_pair(self, user_a: str, user_b: str, venue_id: str, match_id: uuid.UUID) -> None:
        # Both directions in one statement; facts already consumed keep their match
        async with translate_store_errors("consume_interest"):
            await self.session.execute(
                update(Interest)
                .where(
                    or_(
                        and_(Interest.from_user_id == user_a, Interest.to_user_id == user_b),
                        and_(Interest.from_user_id == user_b, Interest.to_user_id == user_a),
                    ),
                    Interest.venue_id == venue_id,
                    Interest.consumed_match_id.is_(None),
                )
                .values(consumed_match_id=match_id, consumed_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

    async def _write_interest(self, from_user_id: str, to_user_id: str, venue_id: str) -> None:
        # Committed before the mirror check so at least one of two racing
        # callers always sees the other's fact.
        if await self.has_interest(from_user_id, to_user_id, venue_id):
            return
        async with translate_store_errors("record_interest"):
            self.session.add(Interest(
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                venue_id=venue_id,
                created_at=self.clock(),
            ))
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                logger.debug(f"Interest {from_user_id} -> {to_user_id} at {venue_id} already recorded")

    async def get_interest(self, from_user_id: str, to_user_id: str, venue_id: str) -> Optional[Interest]:
        async with translate_store_errors("get_interest"):
            stmt = (
                select(Interest)
                .where(
                    Interest.from_user_id == from_user_id,
                    Interest.to_user_id == to_user_id,
                    Interest.venue_id == venue_id,
                )
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

    async def has_interest(self, from_user_id: str, to_user_id: str, venue_id: str) -> bool:
        async with translate_store_errors("has_interest"):
            stmt = select(Interest.from_user_id).where(
                Interest.from_user_id == from_user_id,
                Interest.to_user_id == to_user_id,
                Interest.venue_id == venue_id,
            )
            result = await self.session.execute(stmt)
            return result.first() is not None

    async def list_received(self, user_id: str, venue_id: str) -> List[Interest]:
        """Interests other users expressed in `user_id` at a venue."""
        async with translate_store_errors("list_received"):
            stmt = (
                select(Interest)
                .where(Interest.to_user_id == user_id, Interest.venue_id == venue_id)
                .order_by(Interest.created_at.desc())
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
