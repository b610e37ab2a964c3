import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import IntegrityError, OperationalError
from app.core.store_errors import translate_store_errors, with_store_retry, retry_delay
from app.core.exceptions import StoreUnavailableError, NotFoundError


@pytest.mark.asyncio
async def test_operational_errors_become_store_unavailable():
    with pytest.raises(StoreUnavailableError) as exc:
        async with translate_store_errors("lookup"):
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    assert exc.value.code == "store_unavailable"
    assert exc.value.user_message == "Something went wrong. Please try again."


@pytest.mark.asyncio
async def test_integrity_errors_pass_through():
    with pytest.raises(IntegrityError):
        async with translate_store_errors("insert"):
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))


def test_retry_delay_backoff():
    assert retry_delay(0) == pytest.approx(0.2)
    assert retry_delay(1) == pytest.approx(0.4)
    assert retry_delay(10) == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_with_store_retry_retries_transient_faults():
    calls = AsyncMock(side_effect=[StoreUnavailableError(), StoreUnavailableError(), "ok"])

    @with_store_retry
    async def operation():
        return await calls()

    with patch("app.core.store_errors.asyncio.sleep", AsyncMock()) as mock_sleep:
        assert await operation() == "ok"

    assert calls.await_count == 3
    assert [c.args[0] for c in mock_sleep.await_args_list] == [pytest.approx(0.2), pytest.approx(0.4)]


@pytest.mark.asyncio
async def test_with_store_retry_gives_up():
    calls = AsyncMock(side_effect=StoreUnavailableError())

    @with_store_retry(max_attempts=2)
    async def operation():
        return await calls()

    with patch("app.core.store_errors.asyncio.sleep", AsyncMock()):
        with pytest.raises(StoreUnavailableError):
            await operation()

    assert calls.await_count == 2


@pytest.mark.asyncio
async def test_with_store_retry_does_not_retry_expected_outcomes():
    calls = AsyncMock(side_effect=NotFoundError())

    @with_store_retry
    async def operation():
        return await calls()

    with pytest.raises(NotFoundError):
        await operation()

    assert calls.await_count == 1
