"""
Application state: everything the running service shares between requests.

One `AppState` is built at startup and passed to whatever needs it; there
are no module-level singletons besides the default `settings`.
`init_feed` may be called again (e.g. after a config change); the old
event manager's timers are cancelled before the new one takes over.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from feed import FeedPublisher
from render import RenderContext
from repo_events import HistoryRepo
from service_events import EventManager
from settings import Settings
from sonarr import SeriesResolver, SonarrClient
from timers import Scheduler

logger = logging.getLogger("state")


class AppState:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.history = HistoryRepo(settings.history_file)
        self.series_data: Dict[int, Dict[str, Any]] = {}
        self.context = RenderContext(
            application_url=settings.normalized_application_url,
            sonarr_base_url=settings.sonarr_base_url,
            series_data=self.series_data,
        )
        self.sonarr: Optional[SonarrClient] = None
        self.resolver: Optional[SeriesResolver] = None
        if settings.sonarr_base_url and settings.sonarr_api_key:
            try:
                self.sonarr = SonarrClient(settings.sonarr_base_url, settings.sonarr_api_key)
                self.resolver = SeriesResolver(self.sonarr, self.series_data)
            except ValueError as e:
                logger.warning(f"Sonarr API disabled. {e}")
        self.feed: Optional[FeedPublisher] = None
        self.event_manager: Optional[EventManager] = None
        self._tasks: Set[asyncio.Task] = set()

    def load(self) -> None:
        self.history.load()
        logger.info(f"Loaded {len(self.history)} events from {self.history.history_file}")

    async def update_host_config(self) -> None:
        """Pick up the instance name from Sonarr; failure leaves the default."""

        if self.sonarr is None:
            return
        try:
            host_config = await self.sonarr.host_config()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Cannot read Sonarr host config. {e}")
            return
        self.context.instance_name = host_config.get("instanceName") or self.context.instance_name

    def request_series(self, series_ids: Set[int]) -> None:
        """Fetch series data in the background; never waits for it."""

        if self.resolver is None:
            return
        wanted = self.resolver.unseen(series_ids)
        if not wanted:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No event loop running, not fetching series {sorted(wanted)}")
            return
        task = loop.create_task(self.resolver.ensure_series(wanted))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def init_feed(self, scheduler: Scheduler) -> EventManager:
        """(Re)build the feed and event manager, seeding both from history."""

        if self.event_manager is not None:
            self.event_manager.clear()

        self.feed = FeedPublisher(self.settings, self.context)
        self.event_manager = EventManager(
            self.settings, self.history, self.feed, scheduler, series_hook=self.request_series
        )

        seeded = self.event_manager.generate_historical(self.settings.feed_seed_count)
        series_ids: Set[int] = set()
        for event in sorted(seeded, key=lambda e: e.index):
            if event.event.series is not None:
                series_ids.add(event.event.series.id)
            self.event_manager.add_event_to_feed(event)
        self.request_series(series_ids)
        logger.info(
            f"Feed initialised with {len(self.feed)} events, "
            f"{len(self.event_manager.delayed)} health events delayed"
        )
        return self.event_manager

    async def close(self) -> None:
        if self.event_manager is not None:
            self.event_manager.clear()
        for task in list(self._tasks):
            task.cancel()
        if self.sonarr is not None:
            await self.sonarr.aclose()
