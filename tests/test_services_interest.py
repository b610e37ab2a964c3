import asyncio
import pytest
from sqlalchemy import select, func
from app.services.interest_service import InterestService
from app.services.rate_limit_service import RateLimitService
from app.models.match import Match
from app.core.exceptions import InvalidRequestError, RateLimitedError

WINDOW_MS = 3 * 60 * 60 * 1000


@pytest.fixture
def service(session, clock):
    return InterestService(session, clock=clock)


async def count_matches(session):
    return (await session.execute(select(func.count(Match.id)))).scalar()


@pytest.mark.asyncio
async def test_one_sided_interest_creates_nothing(service, session):
    result = await service.record_interest("alice", "bob", "venue-1")

    assert result.match_created is False
    assert result.match_id is None
    assert await service.has_interest("alice", "bob", "venue-1")
    assert not await service.has_interest("bob", "alice", "venue-1")
    assert await count_matches(session) == 0


@pytest.mark.asyncio
async def test_mirrored_interest_creates_match(service, session):
    await service.record_interest("alice", "bob", "venue-1")
    result = await service.record_interest("bob", "alice", "venue-1", "Blue Bar")

    assert result.match_created is True
    match = (await session.execute(select(Match).where(Match.id == result.match_id))).scalar_one()
    assert {match.participant_a, match.participant_b} == {"alice", "bob"}
    assert match.venue_id == "venue-1"
    assert match.venue_name == "Blue Bar"


@pytest.mark.asyncio
async def test_rerecording_is_idempotent(service, session):
    await service.record_interest("alice", "bob", "venue-1")
    first = await service.record_interest("bob", "alice", "venue-1")

    again = await service.record_interest("alice", "bob", "venue-1")
    again_mirror = await service.record_interest("bob", "alice", "venue-1")

    assert again.match_created is False
    assert again.match_id == first.match_id
    assert again_mirror.match_id == first.match_id
    assert await count_matches(session) == 1


@pytest.mark.asyncio
async def test_interest_is_scoped_to_venue(service, session):
    await service.record_interest("alice", "bob", "venue-1")
    result = await service.record_interest("bob", "alice", "venue-2")

    assert result.match_created is False
    assert await count_matches(session) == 0


@pytest.mark.asyncio
async def test_self_interest_rejected(service):
    with pytest.raises(InvalidRequestError):
        await service.record_interest("alice", "alice", "venue-1")


@pytest.mark.asyncio
async def test_simultaneous_mirrored_interest_creates_one_match(session_factory, clock):
    async def like(from_user, to_user):
        async with session_factory() as s:
            return await InterestService(s, clock=clock).record_interest(from_user, to_user, "venue-1")

    results = await asyncio.gather(like("alice", "bob"), like("bob", "alice"))

    assert sum(1 for r in results if r.match_created) == 1
    match_ids = {r.match_id for r in results if r.match_id is not None}
    assert len(match_ids) == 1

    async with session_factory() as s:
        assert await count_matches(s) == 1


@pytest.mark.asyncio
async def test_lapsed_pair_is_not_rematched_by_one_sided_like(service, session, clock):
    await service.record_interest("alice", "bob", "venue-1")
    first = await service.record_interest("bob", "alice", "venue-1")

    clock.advance(WINDOW_MS + 1)
    later = await service.record_interest("alice", "bob", "venue-1")

    assert later.match_created is False
    assert later.match_id == first.match_id
    assert await count_matches(session) == 1


@pytest.mark.asyncio
async def test_mutual_interest_consumes_both_facts(service, session):
    await service.record_interest("alice", "bob", "venue-1")
    result = await service.record_interest("bob", "alice", "venue-1")

    for from_user, to_user in (("alice", "bob"), ("bob", "alice")):
        interest = await service.get_interest(from_user, to_user, "venue-1")
        assert interest.consumed
        assert interest.consumed_match_id == result.match_id


@pytest.mark.asyncio
async def test_one_sided_interest_stays_unconsumed(service):
    await service.record_interest("alice", "bob", "venue-1")

    interest = await service.get_interest("alice", "bob", "venue-1")
    assert interest.consumed is False
    assert await service.get_interest("bob", "alice", "venue-1") is None


@pytest.mark.asyncio
async def test_like_rate_limit(session, clock):
    limiter = RateLimitService(session, clock=clock, limits={"like": (2, 60)})
    service = InterestService(session, rate_limiter=limiter, clock=clock)

    await service.record_interest("alice", "bob", "venue-1")
    await service.record_interest("alice", "carol", "venue-1")
    with pytest.raises(RateLimitedError) as exc:
        await service.record_interest("alice", "dave", "venue-1")

    assert exc.value.retry_after == 60
    assert not await service.has_interest("alice", "dave", "venue-1")


@pytest.mark.asyncio
async def test_list_received(service, clock):
    await service.record_interest("bob", "alice", "venue-1")
    clock.advance(1000)
    await service.record_interest("carol", "alice", "venue-1")
    await service.record_interest("dave", "alice", "venue-2")

    received = await service.list_received("alice", "venue-1")

    assert [i.from_user_id for i in received] == ["carol", "bob"]
