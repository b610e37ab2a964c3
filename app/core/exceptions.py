"""
Error taxonomy for the match engine.

Everything except StoreUnavailableError is an expected, user-facing outcome:
callers show `user_message` and never retry automatically.
StoreUnavailableError is the only transient class.
"""
from typing import Optional


class MatchEngineError(Exception):
    code = "match_engine_error"
    user_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None, *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


class NotFoundError(MatchEngineError):
    code = "not_found"
    user_message = "This match no longer exists."


class MatchExpiredError(MatchEngineError):
    code = "expired"
    user_message = "This match has expired."


class NotParticipantError(MatchEngineError):
    code = "not_participant"
    user_message = "You are not part of this match."


class QuotaExceededError(MatchEngineError):
    code = "quota_exceeded"
    user_message = "You've used all your messages with this match."


class CoLocationRequiredError(MatchEngineError):
    code = "colocation_required"
    user_message = "Reconnecting requires you both to be checked in at the same venue."


class InvalidRequestError(MatchEngineError):
    code = "invalid_request"
    user_message = "This request is not valid."


class RateLimitedError(MatchEngineError):
    code = "rate_limited"

    def __init__(self, action: str, retry_after: int):
        self.action = action
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for '{action}'",
            user_message=f"Slow down a little. Try again in {retry_after} seconds.",
        )


class StoreUnavailableError(MatchEngineError):
    """Transient infrastructure fault; eligible for retry with backoff."""
    code = "store_unavailable"
    user_message = "Something went wrong. Please try again."
