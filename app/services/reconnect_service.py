import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from app.models.match import Match
from app.models.reconnect_request import ReconnectRequest
from app.services.match_service import MatchService
from app.infrastructure.clients.checkin import CheckInDirectory, VenueRef, shared_venue
from app.core.config import settings
from app.core.exceptions import (
    MatchEngineError,
    NotParticipantError,
    InvalidRequestError,
    CoLocationRequiredError,
)
from app.core.store_errors import translate_store_errors
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class ReconnectState(str, enum.Enum):
    NO_REQUEST = "no_request"
    ONE_REQUESTED = "one_requested"
    BOTH_REQUESTED = "both_requested"  # Waiting on co-location
    RECONNECTED = "reconnected"


@dataclass(frozen=True)
class ReconnectOutcome:
    state: ReconnectState
    requested_by: Tuple[str, ...] = ()
    new_match_id: Optional[uuid.UUID] = None
    waiting_on_colocation: bool = False


class ReconnectService:
    """
    Mutual, co-location gated reconnects for expired matches.

    A completed reconnect mints a brand-new match (new id, new window) and
    stamps `reconnected_at` on the old one; the old match is kept as history.
    """

    def __init__(
        self,
        session: AsyncSession,
        checkins: CheckInDirectory,
        clock: Clock = now_ms,
        require_colocation: Optional[bool] = None,
        request_ttl_ms: Optional[int] = None,
        match_service: Optional[MatchService] = None,
    ):
        self.session = session
        self.checkins = checkins
        self.clock = clock
        self.require_colocation = (
            settings.RECONNECT_REQUIRE_COLOCATION if require_colocation is None else require_colocation
        )
        self.request_ttl_ms = (
            settings.reconnect_request_ttl_ms if request_ttl_ms is None else request_ttl_ms
        )
        self.match_service = match_service or MatchService(session, clock=clock)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def request_reconnect(self, match_id, requester: str) -> ReconnectOutcome:
        """
        File `requester`'s consent to reconnect. The second distinct consent
        completes the reconnect when both users share a venue; otherwise the
        pair is held pending until co-location holds or the requests lapse.
        """
        match = await self.match_service.get_match(match_id)
        if not match.is_participant(requester):
            raise NotParticipantError(f"{requester} is not part of match {match.id}")

        if match.reconnected_at is not None:
            return ReconnectOutcome(
                state=ReconnectState.RECONNECTED,
                new_match_id=match.reconnected_match_id,
            )

        await self._ensure_expired(match)
        await self._discard_stale_requests(match.id)
        await self._record_request(match.id, requester)

        requested_by = await self.get_requested_by(match.id)
        logger.info(f"Reconnect requested on match {match.id} by {requester} ({len(requested_by)}/2)")
        if len(requested_by) < 2:
            # The other consent may have landed and completed the pair already
            current = await self.match_service.get_match(match.id)
            if current.reconnected_at is not None:
                return ReconnectOutcome(
                    state=ReconnectState.RECONNECTED,
                    new_match_id=current.reconnected_match_id,
                )
            return ReconnectOutcome(state=ReconnectState.ONE_REQUESTED, requested_by=requested_by)

        return await self._try_complete(match, requested_by)

    async def complete_reconnect(self, match_id) -> ReconnectOutcome:
        """Re-evaluate a pending pair. Raises CoLocationRequiredError if still apart."""
        match = await self.match_service.get_match(match_id)
        if match.reconnected_at is not None:
            return ReconnectOutcome(
                state=ReconnectState.RECONNECTED,
                new_match_id=match.reconnected_match_id,
            )

        requested_by = await self.get_requested_by(match.id)
        if len(requested_by) < 2:
            raise InvalidRequestError(
                f"Match {match.id} has {len(requested_by)} of 2 reconnect requests",
                user_message="Both of you need to ask to reconnect.",
            )

        outcome = await self._try_complete(match, requested_by)
        if outcome.waiting_on_colocation:
            raise CoLocationRequiredError(f"Participants of match {match.id} are not at the same venue")
        return outcome

    async def cancel_reconnect_request(self, match_id, requester: str) -> ReconnectOutcome:
        match = await self.match_service.get_match(match_id)
        if not match.is_participant(requester):
            raise NotParticipantError(f"{requester} is not part of match {match.id}")

        async with translate_store_errors("cancel_reconnect_request"):
            await self.session.execute(
                delete(ReconnectRequest).where(
                    ReconnectRequest.match_id == match.id,
                    ReconnectRequest.user_id == requester,
                )
            )
            await self.session.commit()

        logger.info(f"Reconnect request on match {match.id} cancelled by {requester}")
        return await self.get_reconnect_state(match.id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_requested_by(self, match_id) -> Tuple[str, ...]:
        cutoff = self.clock() - self.request_ttl_ms
        async with translate_store_errors("get_requested_by"):
            stmt = select(ReconnectRequest.user_id).where(
                ReconnectRequest.match_id == match_id,
                ReconnectRequest.requested_at > cutoff,
            )
            result = await self.session.execute(stmt)
            return tuple(sorted(set(result.scalars().all())))

    async def get_reconnect_state(self, match_id) -> ReconnectOutcome:
        match = await self.match_service.get_match(match_id)
        if match.reconnected_at is not None:
            return ReconnectOutcome(
                state=ReconnectState.RECONNECTED,
                new_match_id=match.reconnected_match_id,
            )
        requested_by = await self.get_requested_by(match.id)
        if not requested_by:
            return ReconnectOutcome(state=ReconnectState.NO_REQUEST)
        if len(requested_by) == 1:
            return ReconnectOutcome(state=ReconnectState.ONE_REQUESTED, requested_by=requested_by)
        return ReconnectOutcome(
            state=ReconnectState.BOTH_REQUESTED,
            requested_by=requested_by,
            waiting_on_colocation=True,
        )

    async def list_pending_for_user(self, user_id: str) -> List[ReconnectRequest]:
        """Fresh requests from the other side of `user_id`'s matches."""
        cutoff = self.clock() - self.request_ttl_ms
        stmt = (
            select(ReconnectRequest)
            .join(Match, Match.id == ReconnectRequest.match_id)
            .where(
                or_(Match.participant_a == user_id, Match.participant_b == user_id),
                ReconnectRequest.user_id != user_id,
                ReconnectRequest.requested_at > cutoff,
                Match.reconnected_at.is_(None),
            )
            .order_by(ReconnectRequest.requested_at.desc())
        )
        async with translate_store_errors("list_pending_for_user"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def process_pending_requests(self) -> Dict[str, int]:
        """
        Drop lapsed requests and complete pairs that have since become
        co-located. Per-pair failures are logged and skipped.
        """
        discarded = await self._discard_stale_requests()

        async with translate_store_errors("process_pending_requests"):
            stmt = (
                select(ReconnectRequest.match_id)
                .group_by(ReconnectRequest.match_id)
                .having(func.count(ReconnectRequest.id) >= 2)
            )
            result = await self.session.execute(stmt)
            match_ids = list(result.scalars().all())

        completed = 0
        waiting = 0
        for match_id in match_ids:
            try:
                match = await self.match_service.get_match(match_id)
                if match.reconnected_at is not None:
                    continue
                requested_by = await self.get_requested_by(match.id)
                if len(requested_by) < 2:
                    continue
                outcome = await self._try_complete(match, requested_by)
            except MatchEngineError as e:
                logger.error(f"Pending reconnect for match {match_id} failed: {e}")
                await self.session.rollback()
                continue
            if outcome.state == ReconnectState.RECONNECTED:
                completed += 1
            else:
                waiting += 1

        summary = {"discarded": discarded, "completed": completed, "waiting": waiting}
        logger.info(f"Reconnect housekeeping: {summary}")
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _ensure_expired(self, match: Match) -> None:
        # Reconnect exists because the window lapsed, not to bypass it
        if match.expired:
            return
        if not self.match_service.is_expired(match):
            raise InvalidRequestError(
                f"Match {match.id} is still active",
                user_message="This match is still active, keep chatting!",
            )
        await self.match_service.flag_expired(match.id)

    async def _record_request(self, match_id: uuid.UUID, requester: str) -> None:
        async with translate_store_errors("record_reconnect_request"):
            existing = await self.session.execute(
                select(ReconnectRequest.id).where(
                    ReconnectRequest.match_id == match_id,
                    ReconnectRequest.user_id == requester,
                )
            )
            if existing.first() is not None:
                return
            self.session.add(ReconnectRequest(
                match_id=match_id,
                user_id=requester,
                requested_at=self.clock(),
            ))
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()

    async def _discard_stale_requests(self, match_id: Optional[uuid.UUID] = None) -> int:
        cutoff = self.clock() - self.request_ttl_ms
        stmt = delete(ReconnectRequest).where(ReconnectRequest.requested_at <= cutoff)
        if match_id is not None:
            stmt = stmt.where(ReconnectRequest.match_id == match_id)
        async with translate_store_errors("discard_stale_requests"):
            result = await self.session.execute(stmt.execution_options(synchronize_session=False))
            await self.session.commit()
        if result.rowcount:
            logger.info(f"Discarded {result.rowcount} lapsed reconnect requests")
        return result.rowcount or 0

    async def _resolve_venue(self, match: Match) -> Optional[VenueRef]:
        venue = await shared_venue(self.checkins, match.participant_a, match.participant_b)
        if venue is not None or self.require_colocation:
            return venue
        # Remote reconnect: reuse where they originally met
        return VenueRef(venue_id=match.venue_id, venue_name=match.venue_name)

    async def _try_complete(self, match: Match, requested_by: Tuple[str, ...]) -> ReconnectOutcome:
        venue = await self._resolve_venue(match)
        if venue is None:
            logger.info(f"Reconnect on match {match.id} waiting on co-location")
            return ReconnectOutcome(
                state=ReconnectState.BOTH_REQUESTED,
                requested_by=requested_by,
                waiting_on_colocation=True,
            )

        new_match, _ = await self.match_service.create_match(
            match.participant_a,
            match.participant_b,
            venue.venue_id,
            venue.venue_name,
            previous_match_id=match.id,
        )

        async with translate_store_errors("complete_reconnect"):
            result = await self.session.execute(
                update(Match)
                .where(Match.id == match.id, Match.reconnected_at.is_(None))
                .values(reconnected_at=self.clock(), reconnected_match_id=new_match.id)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                delete(ReconnectRequest)
                .where(ReconnectRequest.match_id == match.id)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        if result.rowcount == 0:
            # A concurrent completion stamped the old match first
            old = await self.match_service.get_match(match.id)
            return ReconnectOutcome(
                state=ReconnectState.RECONNECTED,
                requested_by=requested_by,
                new_match_id=old.reconnected_match_id,
            )

        logger.info(f"Match {match.id} reconnected as {new_match.id} at venue {venue.venue_id}")
        return ReconnectOutcome(
            state=ReconnectState.RECONNECTED,
            requested_by=requested_by,
            new_match_id=new_match.id,
        )
