from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from typing import Any, Dict, List, Optional, Tuple
import uuid
import logging
from app.models.match import Match, MatchMessage, make_pair_key
from app.core.config import settings
from app.core.exceptions import (
    NotFoundError,
    MatchExpiredError,
    NotParticipantError,
    QuotaExceededError,
    InvalidRequestError,
    StoreUnavailableError,
)
from app.core.store_errors import translate_store_errors
from app.utils.clock import Clock, now_ms, format_duration_ms
from app.config.constants import (
    MAX_MESSAGE_LENGTH,
    CREATE_MATCH_MAX_ATTEMPTS,
    MAX_MATCHES_PER_QUERY,
)

logger = logging.getLogger(__name__)

PARTICIPANT_FIELDS = ("participant_a", "participant_b")


def as_match_id(match_id) -> uuid.UUID:
    """Coerce an external match id; unparseable ids simply don't exist."""
    if isinstance(match_id, uuid.UUID):
        return match_id
    try:
        return uuid.UUID(str(match_id))
    except (ValueError, TypeError):
        raise NotFoundError(f"Match {match_id} not found")


class MatchService:
    """
    Durable match records: idempotent creation, quota-checked message
    append, contact sharing and expiry flagging.

    The window is always recomputed from `created_at`; the stored `expired`
    flag may lag and is repaired whenever a stale one is observed.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = now_ms,
        window_ms: Optional[int] = None,
        message_quota: Optional[int] = None,
    ):
        self.session = session
        self.clock = clock
        self.window_ms = window_ms if window_ms is not None else settings.match_window_ms
        self.message_quota = (
            message_quota if message_quota is not None else settings.MESSAGE_QUOTA_PER_PARTICIPANT
        )

    # ------------------------------------------------------------------
    # Window helpers
    # ------------------------------------------------------------------

    def is_expired(self, match: Match, now: Optional[int] = None) -> bool:
        now = self.clock() if now is None else now
        return bool(match.expired) or (now - match.created_at) > self.window_ms

    def time_remaining_ms(self, match: Match, now: Optional[int] = None) -> int:
        now = self.clock() if now is None else now
        if match.expired:
            return 0
        return max(0, match.created_at + self.window_ms - now)

    def format_time_remaining(self, match: Match, now: Optional[int] = None) -> str:
        return format_duration_ms(self.time_remaining_ms(match, now))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_match(self, match_id) -> Match:
        match_uuid = as_match_id(match_id)
        async with translate_store_errors("get_match"):
            stmt = (
                select(Match)
                .where(Match.id == match_uuid)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            match = result.scalar_one_or_none()
        if not match:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    async def get_open_match_for_pair(self, user_a: str, user_b: str) -> Optional[Match]:
        stmt = (
            select(Match)
            .where(Match.pair_key == make_pair_key(user_a, user_b), Match.expired == False)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_matches_for_participant(
        self, field: str, user_id: str, limit: int = MAX_MATCHES_PER_QUERY
    ) -> List[Match]:
        """Single-field equality query; 'matches involving me' needs two of these."""
        if field not in PARTICIPANT_FIELDS:
            raise ValueError(f"Unknown participant field: {field}")
        column = getattr(Match, field)
        stmt = (
            select(Match)
            .where(column == user_id)
            .order_by(Match.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        async with translate_store_errors("list_matches"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    async def get_messages(self, match_id) -> List[MatchMessage]:
        match = await self.get_match(match_id)
        async with translate_store_errors("get_messages"):
            stmt = (
                select(MatchMessage)
                .where(MatchMessage.match_id == match.id)
                .order_by(MatchMessage.sent_at.asc())
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    async def get_remaining_messages(self, match_id, user_id: str) -> int:
        match = await self.get_match(match_id)
        if not match.is_participant(user_id):
            raise NotParticipantError(f"{user_id} is not part of match {match.id}")
        used = match.message_count_by_participant[user_id]
        return max(0, self.message_quota - used)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_match(
        self,
        user_a: str,
        user_b: str,
        venue_id: str,
        venue_name: Optional[str] = None,
        previous_match_id: Optional[uuid.UUID] = None,
    ) -> Tuple[Match, bool]:
        """
        Conditional create keyed on the canonical pair key.

        Returns (match, created). When an open match already exists for the
        pair, or a concurrent caller wins the insert, the existing match is
        returned with created=False.
        """
        if user_a == user_b:
            raise InvalidRequestError(
                "Cannot match a user with themselves",
                user_message="You can't match with yourself.",
            )

        pair_key = make_pair_key(user_a, user_b)

        for attempt in range(CREATE_MATCH_MAX_ATTEMPTS):
            now = self.clock()
            async with translate_store_errors("create_match"):
                try:
                    await self._expire_stale_for_pair(pair_key, now)
                    match = Match(
                        participant_a=user_a,
                        participant_b=user_b,
                        pair_key=pair_key,
                        venue_id=venue_id,
                        venue_name=venue_name,
                        created_at=now,
                        expired=False,
                        message_count_a=0,
                        message_count_b=0,
                        contact_shared=False,
                        previous_match_id=previous_match_id,
                    )
                    self.session.add(match)
                    await self.session.commit()
                except IntegrityError:
                    await self.session.rollback()
                    existing = await self.get_open_match_for_pair(user_a, user_b)
                    if existing:
                        logger.info(f"Open match {existing.id} already exists for pair {pair_key}")
                        return existing, False
                    logger.warning(f"Pair race on {pair_key} settled without a winner, attempt {attempt + 1}")
                    continue

            logger.info(f"Created match {match.id} for pair {pair_key} at venue {venue_id}")
            return match, True

        raise StoreUnavailableError(f"create_match: pair {pair_key} did not settle")

    async def _expire_stale_for_pair(self, pair_key: str, now: int) -> None:
        # A lapsed-but-unflagged match must not block a new one
        await self.session.execute(
            update(Match)
            .where(
                Match.pair_key == pair_key,
                Match.expired == False,
                Match.created_at < now - self.window_ms,
            )
            .values(expired=True, expired_at=now)
        )

    async def send_message(self, match_id, sender_id: str, text: str) -> MatchMessage:
        """
        Append a message within the sender's quota.

        Checked in order: exists, not expired, participant, quota. The
        counter increment is one conditional UPDATE, so concurrent sends
        from the same sender can never overshoot the quota.
        """
        match = await self.get_match(match_id)
        now = self.clock()

        if self.is_expired(match, now):
            await self.flag_expired(match.id)
            raise MatchExpiredError(f"Match {match.id} has expired")

        if not match.is_participant(sender_id):
            raise NotParticipantError(f"{sender_id} is not part of match {match.id}")

        text = (text or "").strip()
        if not text:
            raise InvalidRequestError("Empty message", user_message="Type a message first.")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise InvalidRequestError(
                "Message too long",
                user_message=f"Messages are limited to {MAX_MESSAGE_LENGTH} characters.",
            )

        if match.message_count_by_participant[sender_id] >= self.message_quota:
            logger.warning(f"Quota exhausted for {sender_id} in match {match.id}")
            raise QuotaExceededError(f"{sender_id} used all {self.message_quota} messages")

        counter = Match.message_count_a if sender_id == match.participant_a else Match.message_count_b

        async with translate_store_errors("send_message"):
            result = await self.session.execute(
                update(Match)
                .where(
                    Match.id == match.id,
                    Match.expired == False,
                    Match.created_at >= now - self.window_ms,
                    counter < self.message_quota,
                )
                .values({counter: counter + 1})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.session.rollback()
                match = await self.get_match(match.id)
                if self.is_expired(match, self.clock()):
                    raise MatchExpiredError(f"Match {match.id} has expired")
                logger.warning(f"Quota exhausted for {sender_id} in match {match.id}")
                raise QuotaExceededError(f"{sender_id} used all {self.message_quota} messages")

            message = MatchMessage(
                match_id=match.id,
                sender_id=sender_id,
                text=text,
                sent_at=now,
            )
            self.session.add(message)
            await self.session.commit()

        logger.info(f"Message {message.id} appended to match {match.id} by {sender_id}")
        return message

    async def share_contact(self, match_id, requester: str, payload: Dict[str, Any]) -> Match:
        """Store the requester's contact details on an active match. Re-sharing overwrites."""
        if not isinstance(payload, dict) or not payload:
            raise InvalidRequestError("Contact payload must be a non-empty object")

        match = await self.get_match(match_id)
        if self.is_expired(match):
            await self.flag_expired(match.id)
            raise MatchExpiredError(f"Match {match.id} has expired")
        if not match.is_participant(requester):
            raise NotParticipantError(f"{requester} is not part of match {match.id}")

        async with translate_store_errors("share_contact"):
            match.contact_shared = True
            match.contact_shared_by = requester
            match.contact_payload = dict(payload)
            await self.session.commit()

        logger.info(f"Contact shared in match {match.id} by {requester}")
        return match

    async def flag_expired(self, match_id) -> bool:
        """
        Set expired=true once the window has lapsed. Idempotent: a no-op for
        active or already-expired matches. Returns True only for the call
        that made the transition.
        """
        match_uuid = as_match_id(match_id)
        now = self.clock()
        async with translate_store_errors("flag_expired"):
            result = await self.session.execute(
                update(Match)
                .where(
                    Match.id == match_uuid,
                    Match.expired == False,
                    Match.created_at < now - self.window_ms,
                )
                .values(expired=True, expired_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        changed = result.rowcount > 0
        if changed:
            logger.info(f"Match {match_uuid} flagged expired")
        return changed
