"""
Client-side read model of "my active matches".

The store only answers single-field equality queries, so the view runs two
subscriptions (participant_a == me, participant_b == me), unions them by
match id and hides matches older than the window. The time filter governs
display only; the server's expiry check governs writes.
"""
import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol
from app.core.config import settings
from app.services.match_service import MatchService
from app.utils.clock import Clock, now_ms
from app.config.constants import DEFAULT_FEED_POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

QUERY_FIELDS = ("participant_a", "participant_b")

SnapshotCallback = Callable[[List[Any]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class MatchFeed(Protocol):
    def subscribe(
        self,
        field: str,
        user_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """Deliver the full result set of `field == user_id` on every change."""
        ...


def merge_match_sets(*result_sets: Iterable[Any], now: int, window_ms: int) -> List[Any]:
    """Union result sets by match id, drop matches past the window, newest first."""
    merged: Dict[Any, Any] = {}
    for results in result_sets:
        for match in results:
            merged[match.id] = match
    active = [m for m in merged.values() if now - m.created_at <= window_ms]
    return sorted(active, key=lambda m: m.created_at, reverse=True)


class RealtimeMatchView:
    """
    Merged, self-filtering view over two match subscriptions.

    Exposes `matches`, `loading`, `error` and `retry()`. If one query fails
    the other's results stay visible and the error is surfaced. After
    `close()` no callback has any effect.
    """

    def __init__(
        self,
        feed: MatchFeed,
        user_id: str,
        clock: Clock = now_ms,
        window_ms: Optional[int] = None,
        on_change: Optional[Callable[["RealtimeMatchView"], None]] = None,
    ):
        self.feed = feed
        self.user_id = user_id
        self.clock = clock
        self.window_ms = settings.match_window_ms if window_ms is None else window_ms
        self.on_change = on_change

        self._results: Dict[str, Dict[Any, Any]] = {field: {} for field in QUERY_FIELDS}
        self._errors: Dict[str, Optional[Exception]] = {field: None for field in QUERY_FIELDS}
        self._answered = set()
        self._unsubscribers: List[Unsubscribe] = []
        self._generation = 0
        self._closed = False
        self._matches: List[Any] = []

    @property
    def matches(self) -> List[Any]:
        return list(self._matches)

    @property
    def loading(self) -> bool:
        return len(self._answered) < len(QUERY_FIELDS)

    @property
    def error(self) -> Optional[Exception]:
        for field in QUERY_FIELDS:
            if self._errors[field] is not None:
                return self._errors[field]
        return None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "RealtimeMatchView":
        if self._closed:
            raise RuntimeError("View is closed")
        if not self._unsubscribers:
            self._subscribe()
        return self

    def retry(self) -> None:
        """Tear down both subscriptions, then establish fresh ones."""
        if self._closed:
            raise RuntimeError("View is closed")
        self._teardown()
        self._errors = {field: None for field in QUERY_FIELDS}
        self._answered = set()
        self._subscribe()

    def refresh(self) -> None:
        """Re-apply the window filter as time passes, without new data."""
        if not self._closed:
            self._recompute()

    def close(self) -> None:
        self._closed = True
        self._teardown()

    def _subscribe(self) -> None:
        self._generation += 1
        generation = self._generation
        for field in QUERY_FIELDS:
            unsubscribe = self.feed.subscribe(
                field,
                self.user_id,
                functools.partial(self._on_snapshot, generation, field),
                functools.partial(self._on_error, generation, field),
            )
            self._unsubscribers.append(unsubscribe)

    def _teardown(self) -> None:
        # Invalidate callbacks still in flight from the old subscriptions
        self._generation += 1
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            try:
                unsubscribe()
            except Exception as e:
                logger.error(f"Failed to unsubscribe match query for {self.user_id}: {e}")

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _on_snapshot(self, generation: int, field: str, matches: List[Any]) -> None:
        if self._is_stale(generation):
            return
        self._results[field] = {m.id: m for m in matches}
        self._errors[field] = None
        self._answered.add(field)
        self._recompute()

    def _on_error(self, generation: int, field: str, error: Exception) -> None:
        if self._is_stale(generation):
            return
        logger.error(f"Match query {field} == {self.user_id} failed: {error}")
        self._errors[field] = error
        self._answered.add(field)
        self._recompute()

    def _recompute(self) -> None:
        self._matches = merge_match_sets(
            *(results.values() for results in self._results.values()),
            now=self.clock(),
            window_ms=self.window_ms,
        )
        if self.on_change is not None:
            self.on_change(self)


class PollingMatchFeed:
    """
    MatchFeed over the match store: re-runs the equality query every
    `interval_seconds` on an asyncio task. Unsubscribing cancels the task.
    """

    def __init__(self, session_factory, interval_seconds: float = DEFAULT_FEED_POLL_INTERVAL_SECONDS):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds

    def subscribe(
        self,
        field: str,
        user_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(
            self._poll(field, user_id, on_snapshot, on_error)
        )
        return task.cancel

    async def _poll(
        self,
        field: str,
        user_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> None:
        while True:
            try:
                async with self.session_factory() as session:
                    matches = await MatchService(session).list_matches_for_participant(field, user_id)
                on_snapshot(matches)
            except asyncio.CancelledError:
                logger.debug(f"Match feed {field} == {user_id} cancelled")
                raise
            except Exception as e:
                on_error(e)
            await asyncio.sleep(self.interval_seconds)
