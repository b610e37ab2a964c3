"""Translation of driver faults into StoreUnavailableError, and retry with backoff."""
import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from app.core.exceptions import StoreUnavailableError
from app.config.constants import (
    STORE_MAX_ATTEMPTS,
    STORE_RETRY_DELAY_BASE_SECONDS,
    STORE_RETRY_DELAY_MAX_SECONDS,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def translate_store_errors(operation: str):
    """
    Re-raise transient database faults as StoreUnavailableError.

    Integrity violations are not transient and pass through untouched so
    callers can treat them as a lost race.
    """
    try:
        yield
    except IntegrityError:
        raise
    except (OperationalError, DBAPIError) as e:
        logger.error(f"Store fault during {operation}: {e}")
        raise StoreUnavailableError(f"{operation} failed: store unavailable") from e


def retry_delay(attempt: int) -> float:
    """Backoff before retry number `attempt` (0-based)."""
    return min(STORE_RETRY_DELAY_BASE_SECONDS * (2 ** attempt), STORE_RETRY_DELAY_MAX_SECONDS)


def with_store_retry(func=None, *, max_attempts: int = STORE_MAX_ATTEMPTS):
    """
    Retry an async callable on StoreUnavailableError with exponential backoff.

    Usage:
        @with_store_retry
        async def handler(...): ...

    Any other exception propagates immediately.
    """
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await fn(*args, **kwargs)
                except StoreUnavailableError:
                    if attempt == max_attempts - 1:
                        raise
                    delay = retry_delay(attempt)
                    logger.warning(
                        f"{fn.__name__}: store unavailable, retry {attempt + 1}/{max_attempts - 1} in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
