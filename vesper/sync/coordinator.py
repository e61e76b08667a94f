"""Refresh sweeps over all feeds with bounded concurrency and per-feed backoff."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import structlog

from .engine import SyncEngine
from ..config.settings import Settings, settings as default_settings
from ..ingestion.interfaces import Feed, StorageInterface, SyncResult

logger = structlog.get_logger()


@dataclass
class FailureState:
    """Consecutive failures of a feed and when it may be fetched again."""
    count: int
    next_allowed: float


@dataclass
class RefreshProgress:
    """Progress of the running sweep."""
    completed: int
    total: int


@dataclass
class FeedOutcome:
    """Settled result for one feed in a sweep."""
    feed_id: int
    status: str  # ok, failed, skipped
    result: Optional[SyncResult] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class RefreshCoordinator:
    """Runs refresh sweeps.

    A fixed pool of workers drains a queue of feeds. Failing feeds back off
    exponentially (30s doubling, capped at 15 minutes) and are skipped
    until their window passes, unless the sweep is forced.
    """

    def __init__(
        self,
        storage: StorageInterface,
        engine: SyncEngine,
        settings: Settings = None,
        clock: Callable[[], float] = time.monotonic,
        on_progress: Callable[[Optional[RefreshProgress]], None] = None,
    ):
        self.storage = storage
        self.engine = engine
        self.settings = settings or default_settings
        self.clock = clock
        self.on_progress = on_progress  # Callback for UI progress
        self.progress: Optional[RefreshProgress] = None
        self._failures: Dict[int, FailureState] = {}
        self._last_sweep: Optional[float] = None

    def failure_state(self, feed_id: int) -> Optional[FailureState]:
        return self._failures.get(feed_id)

    def backoff_delay(self, count: int) -> float:
        """Seconds to wait after ``count`` consecutive failures."""
        delay = self.settings.failure_backoff_base_seconds * (2 ** (count - 1))
        return min(delay, self.settings.failure_backoff_max_seconds)

    async def refresh_all(self, force: bool = False) -> Optional[List[FeedOutcome]]:
        """Sweep every subscribed feed.

        Returns one outcome per feed in completion order, or None when a
        non-forced sweep is requested within the minimum interval of the
        previous one.
        """
        now = self.clock()
        if (
            not force
            and self._last_sweep is not None
            and now - self._last_sweep < self.settings.refresh_min_interval_seconds
        ):
            logger.info(
                "refresh_all_throttled",
                seconds_since_last=round(now - self._last_sweep, 1),
            )
            return None
        self._last_sweep = now

        feeds = await asyncio.to_thread(self.storage.get_feeds)
        queue: "asyncio.Queue[Feed]" = asyncio.Queue()
        for feed in feeds:
            queue.put_nowait(feed)

        outcomes: List[FeedOutcome] = []
        worker_count = min(self.settings.refresh_concurrency, len(feeds))
        workers: List[asyncio.Task] = []
        self._set_progress(RefreshProgress(completed=0, total=len(feeds)))
        try:
            workers = [
                asyncio.create_task(self._worker(queue, outcomes, force))
                for _ in range(worker_count)
            ]
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                worker.cancel()
            self._set_progress(None)

        logger.info(
            "refresh_all_complete",
            feeds=len(feeds),
            ok=sum(1 for o in outcomes if o.status == "ok"),
            failed=sum(1 for o in outcomes if o.status == "failed"),
            skipped=sum(1 for o in outcomes if o.status == "skipped"),
            forced=force,
        )
        return outcomes

    async def refresh_feed(self, feed_id: int) -> SyncResult:
        """Sync one feed now, bypassing its backoff window.

        Failures still update the feed's backoff state and are re-raised.
        """
        feed = await asyncio.to_thread(self.storage.get_feed, feed_id)
        if feed is None:
            raise KeyError(f"No feed with id {feed_id}")

        try:
            result = await self.engine.sync_feed(feed, refresh=True)
        except Exception:
            self._record_failure(feed_id)
            raise
        self._failures.pop(feed_id, None)
        return result

    async def _worker(self, queue: "asyncio.Queue[Feed]", outcomes: List[FeedOutcome], force: bool) -> None:
        """Process feeds one at a time until the queue is drained."""
        while True:
            try:
                feed = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                outcomes.append(await self._process(feed, force))
            finally:
                queue.task_done()
                self._advance()

    async def _process(self, feed: Feed, force: bool) -> FeedOutcome:
        state = self._failures.get(feed.id)
        if state is not None and not force and self.clock() < state.next_allowed:
            logger.debug(
                "feed_in_backoff",
                feed_id=feed.id,
                failures=state.count,
                retry_in=round(state.next_allowed - self.clock(), 1),
            )
            return FeedOutcome(feed_id=feed.id, status="skipped")

        try:
            result = await self.engine.sync_feed(feed, refresh=force)
        except Exception as e:
            self._record_failure(feed.id)
            return FeedOutcome(feed_id=feed.id, status="failed", error=e)

        self._failures.pop(feed.id, None)
        return FeedOutcome(feed_id=feed.id, status="ok", result=result)

    def _record_failure(self, feed_id: int) -> None:
        previous = self._failures.get(feed_id)
        count = previous.count + 1 if previous else 1
        delay = self.backoff_delay(count)
        self._failures[feed_id] = FailureState(count=count, next_allowed=self.clock() + delay)
        logger.info("feed_backoff", feed_id=feed_id, failures=count, delay_seconds=delay)

    def _advance(self) -> None:
        if self.progress is not None:
            self._set_progress(RefreshProgress(self.progress.completed + 1, self.progress.total))

    def _set_progress(self, progress: Optional[RefreshProgress]) -> None:
        self.progress = progress
        if self.on_progress:
            self.on_progress(progress)
