"""Match engine HTTP endpoints: interests, messaging, contact sharing, reconnects."""
import logging
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from app.db.session import get_db
from app.models.match import Match
from app.services.match_service import MatchService
from app.services.interest_service import InterestService
from app.services.rate_limit_service import RateLimitService
from app.services.reconnect_service import ReconnectService, ReconnectOutcome
from app.realtime.view_merger import QUERY_FIELDS, merge_match_sets
from app.infrastructure.clients.checkin import CheckInDirectory, build_checkin_directory
from app.schemas.match import (
    InterestRequest,
    InterestResponse,
    SendMessageRequest,
    ShareContactRequest,
    ReconnectRequestBody,
    MatchOut,
    MessageOut,
    ReconnectOut,
    RemainingMessagesOut,
    InterestOut,
    PendingReconnectOut,
)
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["matches"])


# ========================
# Dependencies
# ========================

def get_clock() -> Clock:
    return now_ms


def get_checkin_directory() -> CheckInDirectory:
    return build_checkin_directory()


def _match_out(service: MatchService, match: Match) -> MatchOut:
    now = service.clock()
    return MatchOut(
        id=match.id,
        participant_a=match.participant_a,
        participant_b=match.participant_b,
        venue_id=match.venue_id,
        venue_name=match.venue_name,
        created_at=match.created_at,
        expires_at=match.created_at + service.window_ms,
        expired=service.is_expired(match, now),
        time_remaining_ms=service.time_remaining_ms(match, now),
        time_remaining=service.format_time_remaining(match, now),
        message_count_by_participant=match.message_count_by_participant,
        contact_shared=bool(match.contact_shared),
        contact_shared_by=match.contact_shared_by,
        contact_payload=match.contact_payload,
        reconnected_at=match.reconnected_at,
        reconnected_match_id=match.reconnected_match_id,
        previous_match_id=match.previous_match_id,
    )


def _reconnect_out(outcome: ReconnectOutcome) -> ReconnectOut:
    detail = None
    if outcome.waiting_on_colocation:
        detail = "Waiting until you are both checked in at the same venue."
    return ReconnectOut(
        state=outcome.state.value,
        requested_by=list(outcome.requested_by),
        new_match_id=outcome.new_match_id,
        waiting_on_colocation=outcome.waiting_on_colocation,
        detail=detail,
    )


# ========================
# Interests
# ========================

@router.post("/interests", response_model=InterestResponse)
async def record_interest(
    body: InterestRequest,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    service = InterestService(
        session,
        rate_limiter=RateLimitService(session, clock=clock),
        clock=clock,
    )
    result = await service.record_interest(
        body.from_user_id, body.to_user_id, body.venue_id, body.venue_name
    )
    return InterestResponse(match_created=result.match_created, match_id=result.match_id)


@router.get("/users/{user_id}/interests", response_model=List[InterestOut])
async def list_received_interests(
    user_id: str,
    venue_id: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_db),
):
    """Who liked `user_id` at a venue."""
    return await InterestService(session).list_received(user_id, venue_id)


# ========================
# Matches & messages
# ========================

@router.get("/users/{user_id}/matches", response_model=List[MatchOut])
async def list_active_matches(
    user_id: str,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """One-shot read of the merged view: two equality queries, unioned and window-filtered."""
    service = MatchService(session, clock=clock)
    result_sets = [
        await service.list_matches_for_participant(field, user_id) for field in QUERY_FIELDS
    ]
    merged = merge_match_sets(*result_sets, now=clock(), window_ms=service.window_ms)
    return [_match_out(service, m) for m in merged]


@router.get("/matches/{match_id}", response_model=MatchOut)
async def get_match(
    match_id: str,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    service = MatchService(session, clock=clock)
    match = await service.get_match(match_id)
    return _match_out(service, match)


@router.get("/matches/{match_id}/messages", response_model=List[MessageOut])
async def list_messages(
    match_id: str,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    service = MatchService(session, clock=clock)
    return await service.get_messages(match_id)


@router.post("/matches/{match_id}/messages", response_model=MessageOut)
async def send_message(
    match_id: str,
    body: SendMessageRequest,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    await RateLimitService(session, clock=clock).enforce(body.sender_id, "message")
    service = MatchService(session, clock=clock)
    return await service.send_message(match_id, body.sender_id, body.text)


@router.get("/matches/{match_id}/remaining", response_model=RemainingMessagesOut)
async def remaining_messages(
    match_id: str,
    user_id: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    service = MatchService(session, clock=clock)
    match = await service.get_match(match_id)
    remaining = await service.get_remaining_messages(match.id, user_id)
    return RemainingMessagesOut(match_id=match.id, user_id=user_id, remaining=remaining)


@router.post("/matches/{match_id}/contact", response_model=MatchOut)
async def share_contact(
    match_id: str,
    body: ShareContactRequest,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    service = MatchService(session, clock=clock)
    match = await service.share_contact(match_id, body.requester_id, body.payload)
    return _match_out(service, match)


# ========================
# Reconnect
# ========================

@router.post("/matches/{match_id}/reconnect", response_model=ReconnectOut)
async def request_reconnect(
    match_id: str,
    body: ReconnectRequestBody,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    checkins: CheckInDirectory = Depends(get_checkin_directory),
):
    await RateLimitService(session, clock=clock).enforce(body.requester_id, "reconnect")
    service = ReconnectService(session, checkins, clock=clock)
    outcome = await service.request_reconnect(match_id, body.requester_id)
    return _reconnect_out(outcome)


@router.delete("/matches/{match_id}/reconnect", response_model=ReconnectOut)
async def cancel_reconnect(
    match_id: str,
    requester_id: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    checkins: CheckInDirectory = Depends(get_checkin_directory),
):
    service = ReconnectService(session, checkins, clock=clock)
    outcome = await service.cancel_reconnect_request(match_id, requester_id)
    return _reconnect_out(outcome)


@router.get("/matches/{match_id}/reconnect", response_model=ReconnectOut)
async def reconnect_state(
    match_id: str,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    checkins: CheckInDirectory = Depends(get_checkin_directory),
):
    service = ReconnectService(session, checkins, clock=clock)
    return _reconnect_out(await service.get_reconnect_state(match_id))


@router.post("/matches/{match_id}/reconnect/complete", response_model=ReconnectOut)
async def complete_reconnect(
    match_id: str,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    checkins: CheckInDirectory = Depends(get_checkin_directory),
):
    service = ReconnectService(session, checkins, clock=clock)
    return _reconnect_out(await service.complete_reconnect(match_id))


@router.get("/users/{user_id}/reconnect-requests", response_model=List[PendingReconnectOut])
async def list_pending_reconnects(
    user_id: str,
    session: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    checkins: CheckInDirectory = Depends(get_checkin_directory),
):
    """Reconnect requests waiting on `user_id`'s consent."""
    service = ReconnectService(session, checkins, clock=clock)
    return await service.list_pending_for_user(user_id)
