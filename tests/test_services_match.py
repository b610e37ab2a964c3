import asyncio
import uuid
import pytest
import pytest_asyncio
from sqlalchemy import select, func
from app.services.match_service import MatchService
from app.models.match import Match, MatchMessage, make_pair_key
from app.core.exceptions import (
    NotFoundError,
    MatchExpiredError,
    NotParticipantError,
    QuotaExceededError,
    InvalidRequestError,
)

WINDOW_MS = 3 * 60 * 60 * 1000


@pytest.fixture
def service(session, clock):
    return MatchService(session, clock=clock, window_ms=WINDOW_MS, message_quota=3)


@pytest_asyncio.fixture
async def match(service):
    match, created = await service.create_match("alice", "bob", "venue-1", "Blue Bar")
    assert created
    return match


def test_pair_key_is_order_independent():
    assert make_pair_key("bob", "alice") == make_pair_key("alice", "bob") == "alice:bob"


@pytest.mark.asyncio
async def test_create_match_initial_state(service, match, clock):
    assert match.participant_a == "alice"
    assert match.participant_b == "bob"
    assert match.pair_key == "alice:bob"
    assert match.created_at == clock.now
    assert match.expired is False
    assert match.message_count_by_participant == {"alice": 0, "bob": 0}
    assert match.contact_shared is False
    assert service.format_time_remaining(match) == "3h 0m remaining"


@pytest.mark.asyncio
async def test_create_match_is_idempotent_per_pair(service, session, match):
    again, created = await service.create_match("bob", "alice", "venue-2")

    assert created is False
    assert again.id == match.id
    count = (await session.execute(select(func.count(Match.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_create_match_rejects_self(service):
    with pytest.raises(InvalidRequestError):
        await service.create_match("alice", "alice", "venue-1")


@pytest.mark.asyncio
async def test_create_match_after_lapsed_window_starts_fresh(service, session, match, clock):
    clock.advance(WINDOW_MS + 1)

    fresh, created = await service.create_match("alice", "bob", "venue-1")

    assert created
    assert fresh.id != match.id
    old = await service.get_match(match.id)
    assert old.expired is True


@pytest.mark.asyncio
async def test_concurrent_create_match_yields_one_record(session_factory, clock):
    async def create(a, b):
        async with session_factory() as s:
            match, created = await MatchService(s, clock=clock, window_ms=WINDOW_MS).create_match(a, b, "venue-1")
            return match.id, created

    results = await asyncio.gather(create("alice", "bob"), create("bob", "alice"))

    assert results[0][0] == results[1][0]
    assert sorted(created for _, created in results) == [False, True]


@pytest.mark.asyncio
async def test_get_match_unknown_and_malformed_ids(service):
    with pytest.raises(NotFoundError):
        await service.get_match(uuid.uuid4())
    with pytest.raises(NotFoundError):
        await service.get_match("not-a-uuid")


@pytest.mark.asyncio
async def test_send_message_just_inside_window(service, match, clock):
    clock.advance(WINDOW_MS - 1)

    message = await service.send_message(match.id, "alice", "still here?")

    assert message.sender_id == "alice"
    assert message.sent_at == clock.now


@pytest.mark.asyncio
async def test_send_message_just_outside_window_without_sweep(service, match, clock):
    clock.advance(WINDOW_MS + 1)

    with pytest.raises(MatchExpiredError):
        await service.send_message(match.id, "alice", "too late")

    # The lazily observed expiry is persisted
    stored = await service.get_match(match.id)
    assert stored.expired is True
    assert stored.expired_at == clock.now


@pytest.mark.asyncio
async def test_quota_is_per_participant(service, session, match):
    for i in range(3):
        await service.send_message(match.id, "alice", f"hi {i}")

    with pytest.raises(QuotaExceededError) as exc:
        await service.send_message(match.id, "alice", "one more")
    assert exc.value.user_message == "You've used all your messages with this match."

    # The other side still has a full allowance
    await service.send_message(match.id, "bob", "hello")

    refreshed = await service.get_match(match.id)
    assert refreshed.message_count_by_participant == {"alice": 3, "bob": 1}
    assert await service.get_remaining_messages(match.id, "alice") == 0
    assert await service.get_remaining_messages(match.id, "bob") == 2
    messages = await service.get_messages(match.id)
    assert [m.sender_id for m in messages].count("alice") == 3


@pytest.mark.asyncio
async def test_concurrent_sends_never_overshoot_quota(session_factory, match, clock):
    async def send(i):
        async with session_factory() as s:
            service = MatchService(s, clock=clock, window_ms=WINDOW_MS, message_quota=3)
            return await service.send_message(match.id, "alice", f"burst {i}")

    results = await asyncio.gather(*(send(i) for i in range(6)), return_exceptions=True)

    sent = [r for r in results if isinstance(r, MatchMessage)]
    rejected = [r for r in results if isinstance(r, QuotaExceededError)]
    assert len(sent) == 3
    assert len(rejected) == 3

    async with session_factory() as s:
        stored = await MatchService(s, clock=clock, window_ms=WINDOW_MS).get_match(match.id)
        assert stored.message_count_a == 3
        total = (await s.execute(select(func.count(MatchMessage.id)))).scalar()
        assert total == 3


@pytest.mark.asyncio
async def test_expired_is_reported_before_participant_and_quota(service, match, clock):
    for i in range(3):
        await service.send_message(match.id, "alice", f"hi {i}")
    clock.advance(WINDOW_MS + 1)

    with pytest.raises(MatchExpiredError):
        await service.send_message(match.id, "mallory", "let me in")
    with pytest.raises(MatchExpiredError):
        await service.send_message(match.id, "alice", "over quota and late")


@pytest.mark.asyncio
async def test_send_message_validation(service, match):
    with pytest.raises(NotParticipantError):
        await service.send_message(match.id, "mallory", "hi")
    with pytest.raises(InvalidRequestError):
        await service.send_message(match.id, "alice", "   ")
    with pytest.raises(InvalidRequestError):
        await service.send_message(match.id, "alice", "x" * 1001)
    with pytest.raises(NotFoundError):
        await service.send_message(uuid.uuid4(), "alice", "hi")


@pytest.mark.asyncio
async def test_empty_text_reports_match_state_first(service, match, clock):
    with pytest.raises(NotFoundError):
        await service.send_message(uuid.uuid4(), "alice", "")
    with pytest.raises(NotParticipantError):
        await service.send_message(match.id, "mallory", "   ")

    clock.advance(WINDOW_MS + 1)
    with pytest.raises(MatchExpiredError):
        await service.send_message(match.id, "alice", "")


@pytest.mark.asyncio
async def test_share_contact(service, match):
    updated = await service.share_contact(match.id, "bob", {"instagram": "@bob"})

    assert updated.contact_shared is True
    assert updated.contact_shared_by == "bob"
    assert updated.contact_payload == {"instagram": "@bob"}


@pytest.mark.asyncio
async def test_share_contact_rules(service, match, clock):
    with pytest.raises(NotParticipantError):
        await service.share_contact(match.id, "mallory", {"phone": "1"})
    with pytest.raises(InvalidRequestError):
        await service.share_contact(match.id, "alice", {})

    clock.advance(WINDOW_MS + 1)
    with pytest.raises(MatchExpiredError):
        await service.share_contact(match.id, "alice", {"phone": "1"})


@pytest.mark.asyncio
async def test_flag_expired_is_idempotent(service, match, clock):
    assert await service.flag_expired(match.id) is False

    clock.advance(WINDOW_MS + 1)
    assert await service.flag_expired(match.id) is True
    assert await service.flag_expired(match.id) is False


@pytest.mark.asyncio
async def test_time_remaining(service, match, clock):
    clock.advance(90 * 60 * 1000)
    assert service.format_time_remaining(match) == "1h 30m remaining"
    assert service.time_remaining_ms(match) == WINDOW_MS - 90 * 60 * 1000

    clock.advance(WINDOW_MS)
    assert service.is_expired(match)
    assert service.format_time_remaining(match) == "Expired"


@pytest.mark.asyncio
async def test_list_matches_for_participant(service, match):
    other, _ = await service.create_match("carol", "alice", "venue-1")

    as_a = await service.list_matches_for_participant("participant_a", "alice")
    as_b = await service.list_matches_for_participant("participant_b", "alice")

    assert [m.id for m in as_a] == [match.id]
    assert [m.id for m in as_b] == [other.id]
    with pytest.raises(ValueError):
        await service.list_matches_for_participant("venue_id", "alice")
