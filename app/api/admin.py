"""Admin API endpoints for operations and manual job triggers."""
import hmac
import logging
from fastapi import APIRouter, Depends, HTTPException, Header, Query
from sqlalchemy import select, func
from app.db.session import AsyncSessionLocal
from app.models import Match, MatchMessage, Interest, ReconnectRequest
from app.services.expiry_service import run_expiry_once
from app.services.reconnect_service import ReconnectService
from app.infrastructure.clients.checkin import build_checkin_directory
from app.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def verify_admin_token(x_admin_token: str = Header(None)):
    """Timing-safe token-based admin auth."""
    expected = settings.ADMIN_TOKEN
    if not expected or not x_admin_token:
        raise HTTPException(status_code=403, detail="Forbidden")
    if not hmac.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Forbidden")
    return True


@router.post("/expiry/run")
async def run_expiry(
    clean: bool = Query(False),
    auth: bool = Depends(verify_admin_token),
):
    """Run one expiry sweep now. `clean=1|true` also purges expired matches' messages."""
    async with AsyncSessionLocal() as session:
        summary = await run_expiry_once(
            session,
            clean=clean,
            retention_ms=settings.message_retention_ms,
        )
    logger.info(f"Manual expiry sweep (clean={clean}): {summary.to_dict()}")
    return summary.to_dict()


@router.post("/reconnect/run")
async def run_reconnect_housekeeping(auth: bool = Depends(verify_admin_token)):
    """Drop lapsed reconnect requests and complete co-located pairs now."""
    async with AsyncSessionLocal() as session:
        service = ReconnectService(session, build_checkin_directory())
        return await service.process_pending_requests()


@router.get("/stats")
async def admin_stats(auth: bool = Depends(verify_admin_token)):
    """Counts across the match store."""
    async with AsyncSessionLocal() as session:
        matches_count = (await session.execute(select(func.count(Match.id)))).scalar()
        open_matches = (await session.execute(
            select(func.count(Match.id)).where(Match.expired == False)
        )).scalar()
        reconnected = (await session.execute(
            select(func.count(Match.id)).where(Match.reconnected_at.is_not(None))
        )).scalar()
        messages_count = (await session.execute(select(func.count(MatchMessage.id)))).scalar()
        interests_count = (await session.execute(
            select(func.count()).select_from(Interest)
        )).scalar()
        pending_reconnects = (await session.execute(select(func.count(ReconnectRequest.id)))).scalar()

    return {
        "matches": matches_count,
        "open_matches": open_matches,
        "expired_matches": matches_count - open_matches,
        "reconnected_matches": reconnected,
        "messages": messages_count,
        "interests": interests_count,
        "pending_reconnect_requests": pending_reconnects,
    }
