"""
Poll scheduler for RSS Webhook.

Runs one independent asyncio task per feed. Each task repeats the
fetch -> dedup -> dispatch -> persist cycle on its own interval and
owns its feed's seen-item store, so feeds never share mutable state.
"""

import asyncio
import hashlib
import logging
import random
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from rss_webhook.config import AppConfig, FeedConfig
from rss_webhook.dedup import DedupEngine
from rss_webhook.errors import FetchError, PersistenceError
from rss_webhook.models import NotificationPayload
from rss_webhook.notifier import Dispatcher
from rss_webhook.rss_parser import FeedParser

logger = logging.getLogger(__name__)


class FeedState(str, Enum):
    """Phase of a feed worker."""

    IDLE = "idle"
    FETCHING = "fetching"
    DEDUPING = "deduping"
    DISPATCHING = "dispatching"
    PERSISTING = "persisting"
    STOPPED = "stopped"


@dataclass
class CycleResult:
    """
    Counters for one poll cycle of one feed.

    Attributes
    ----------
    fetched : int
        Items returned by the feed.
    new : int
        Items not seen before.
    delivered : int
        Items the webhook accepted.
    abandoned : int
        Items committed as seen although delivery failed.
    seeded : int
        Items recorded on first run without a notification.
    failed : bool
        True if the feed could not be fetched.
    persisted : bool
        True if the store was flushed without error.
    """

    fetched: int = 0
    new: int = 0
    delivered: int = 0
    abandoned: int = 0
    seeded: int = 0
    failed: bool = False
    persisted: bool = True


def state_path(data_dir: str | Path, feed: FeedConfig) -> Path:
    """
    Return the state file used for a feed.

    The name combines a readable slug of the feed name with a digest
    of its URL, which identifies the feed.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", feed.name.lower()).strip("-")[:40] or "feed"
    digest = hashlib.sha1(feed.url.encode("utf-8")).hexdigest()[:12]
    return Path(data_dir) / f"{slug}-{digest}.json"


class FeedWorker:
    """
    Poll loop for a single feed.
    """

    def __init__(
        self,
        feed: FeedConfig,
        config: AppConfig,
        parser: FeedParser,
        dispatcher: Dispatcher,
        engine: DedupEngine,
        stop_event: asyncio.Event,
    ):
        self.feed = feed
        self.config = config
        self.parser = parser
        self.dispatcher = dispatcher
        self.engine = engine
        self.state = FeedState.IDLE
        self.interval = config.check_interval(feed)
        self.target = config.webhook_target(feed)
        self._stop_event = stop_event
        self._persist_failures = 0
        self._flush_task: asyncio.Future | None = None

    @property
    def healthy(self) -> bool:
        """False while the state file keeps failing to be written."""
        return self._persist_failures < self.config.storage.persist_failure_threshold

    async def run(self) -> None:
        """Run cycles until the stop event is set."""
        jitter = random.uniform(0, min(self.config.defaults.startup_jitter, self.interval))
        try:
            if jitter and await self._wait(jitter):
                return

            while not self._stop_event.is_set():
                try:
                    await self.run_cycle()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Error checking feed '%s': %s", self.feed.name, e)

                if await self._wait(self.interval):
                    break
        finally:
            # Commits made before a cancellation still reach the disk
            self.state = FeedState.PERSISTING
            if self._flush_task is not None and not self._flush_task.done():
                await asyncio.wait([self._flush_task])
            self._flush()
            self.state = FeedState.STOPPED
            logger.debug("Stopped watching feed '%s'", self.feed.name)

    async def _wait(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``. Return True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def run_cycle(self) -> CycleResult:
        """
        Run one fetch -> dedup -> dispatch -> persist cycle.

        Returns
        -------
        CycleResult
            What happened during the cycle.
        """
        result = CycleResult()

        self.state = FeedState.FETCHING
        logger.debug("Checking feed: %s", self.feed.name)
        try:
            candidates = await self.parser.fetch_feed(self.feed)
        except FetchError as e:
            logger.warning("Failed to fetch feed '%s': %s", self.feed.name, e)
            self.state = FeedState.IDLE
            result.failed = True
            return result
        result.fetched = len(candidates)

        self.state = FeedState.DEDUPING
        new_items = self.engine.new_items(candidates)
        result.new = len(new_items)

        if self.engine.is_new:
            new_items, result.seeded = self._apply_initial_limit(new_items)
            self.engine.mark_initialized()

        if new_items:
            logger.info(
                "Found %d new entr%s in '%s'",
                len(new_items),
                "y" if len(new_items) == 1 else "ies",
                self.feed.name,
            )

        self.state = FeedState.DISPATCHING
        for index, item in enumerate(new_items):
            if self._stop_event.is_set():
                logger.info(
                    "Shutdown requested, leaving %d item(s) of '%s' for the next run",
                    len(new_items) - index,
                    self.feed.name,
                )
                break

            payload = NotificationPayload.build(item, self.feed)
            try:
                outcome = await self.dispatcher.deliver(payload, self.target)
            except Exception as e:
                logger.error("Failed to notify for entry '%s': %s", item.title[:50], e)
                continue

            if outcome.delivered:
                self.engine.commit(item.id)
                result.delivered += 1
            elif self.config.webhook.commit_on_failure:
                logger.warning(
                    "Abandoning entry '%s' of '%s' after %d attempt(s), marking it seen",
                    item.id[:50],
                    self.feed.name,
                    outcome.attempts,
                )
                self.engine.commit(item.id)
                result.abandoned += 1
            else:
                logger.warning(
                    "Entry '%s' of '%s' was not delivered after %d attempt(s), will retry next cycle",
                    item.id[:50],
                    self.feed.name,
                    outcome.attempts,
                )

            delay = self.config.webhook.delivery_delay
            if delay and index < len(new_items) - 1:
                await asyncio.sleep(delay)

        self.state = FeedState.PERSISTING
        # Keeps running if the worker is cancelled; run() waits for it
        self._flush_task = asyncio.ensure_future(asyncio.to_thread(self._flush))
        result.persisted = await asyncio.shield(self._flush_task)
        self.state = FeedState.IDLE
        return result

    def _apply_initial_limit(self, new_items: list) -> tuple[list, int]:
        """Split a first-run batch into items to notify and items to only record."""
        limit = self.config.initial_limit(self.feed)
        if limit is None:
            return new_items, 0

        notify, seed = new_items[:limit], new_items[limit:]
        for item in seed:
            self.engine.commit(item.id)
        if seed:
            logger.info(
                "New feed detected: marking %d existing entries as seen for '%s'",
                len(seed),
                self.feed.name,
            )
        return notify, len(seed)

    def _flush(self) -> bool:
        """Persist the store, tracking consecutive failures."""
        try:
            self.engine.flush()
        except PersistenceError as e:
            self._persist_failures += 1
            threshold = self.config.storage.persist_failure_threshold
            if self._persist_failures >= threshold:
                logger.error(
                    "State for '%s' could not be saved %d times in a row, "
                    "items may be notified again after a restart: %s",
                    self.feed.name,
                    self._persist_failures,
                    e,
                )
            else:
                logger.warning("Failed to save state for '%s': %s", self.feed.name, e)
            return False

        if self._persist_failures:
            logger.info("State for '%s' saved again", self.feed.name)
        self._persist_failures = 0
        return True


class PollScheduler:
    """
    Runs a FeedWorker task for every enabled feed.
    """

    def __init__(self, config: AppConfig, parser: FeedParser, dispatcher: Dispatcher):
        """
        Create the workers and load each feed's state.

        Parameters
        ----------
        config : AppConfig
            Validated application configuration.
        parser : FeedParser
            Shared feed fetcher.
        dispatcher : Dispatcher
            Shared webhook client.
        """
        self.config = config
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self.workers: list[FeedWorker] = []

        for feed in config.feeds:
            if not feed.enabled:
                continue
            engine = DedupEngine.open(
                state_path(config.storage.data_dir, feed),
                feed_url=feed.url,
                retention=config.storage.retention,
            )
            self.workers.append(
                FeedWorker(feed, config, parser, dispatcher, engine, self._stop_event)
            )

    @property
    def healthy(self) -> bool:
        """False if any feed is failing to persist its state."""
        return all(worker.healthy for worker in self.workers)

    async def run(self) -> None:
        """Start every worker and wait until they all stop."""
        for worker in self.workers:
            self._tasks.append(asyncio.create_task(worker.run(), name=f"feed:{worker.feed.name}"))
            logger.info("Started watching feed: %s", worker.feed.name)

        logger.info("Polling %d active feed(s)", len(self._tasks))
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self, grace: float | None = None) -> None:
        """
        Stop all workers.

        Workers get ``grace`` seconds to finish their current cycle
        before they are cancelled.

        Parameters
        ----------
        grace : float | None
            Grace period in seconds. Defaults to ``shutdown_grace``.
        """
        self._stop_event.set()
        if not self._tasks:
            return

        grace = self.config.shutdown_grace if grace is None else grace
        pending = {task for task in self._tasks if not task.done()}
        if pending and grace > 0:
            _, pending = await asyncio.wait(pending, timeout=grace)
        for task in pending:
            logger.warning("Cancelling '%s' after the shutdown grace period", task.get_name())
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
