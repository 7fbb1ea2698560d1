"""
Service layer: event ingestion and delayed health reconciliation.

This module decides what happens to each received event. It is free of
HTTP and file handling; it calls `HistoryRepo` for storage and
`FeedPublisher` for output.

Key responsibilities:
- append every received event to history and persist it
- hold Health events whose `type` is configured for delay until either a
  matching HealthRestored arrives (both are dropped) or the delay elapses
  (the Health event is published)
- optionally purge resolved Health/HealthRestored pairs from history
- rebuild pending delays and the initial feed content from history on
  startup (`generate_historical`)

All state changes happen on one thread: ingestion runs in async route
handlers and timers fire on the same event loop.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from feed import FeedPublisher
from models import Event, EventType, WebHookPayload, health_id
from repo_events import HistoryRepo
from settings import Settings
from timers import Scheduler

logger = logging.getLogger("feed")

MINUTE_MS = 60_000


@dataclass
class HealthTimer:
    health_id: str
    event: Event
    start_time: int
    handle: Any = None
    consumed: bool = False
    # older same-identity Health events this timer took over from
    replaced: List[Event] = field(default_factory=list)


class EventManager:
    """Routes events to the feed, the delay map or the bin.

    Example usage:
        manager = EventManager(settings, history, feed, LoopScheduler())
        manager.receive(payload)

    Set `install_delay_timeouts = False` to replay history offline: pending
    health events then never time out and a late restore is recognised by
    its timestamp instead.
    """

    def __init__(
        self,
        settings: Settings,
        history: HistoryRepo,
        feed: FeedPublisher,
        scheduler: Scheduler,
        series_hook: Optional[Callable[[Set[int]], None]] = None,
    ):
        self.settings = settings
        self.history = history
        self.feed = feed
        self.scheduler = scheduler
        self.series_hook = series_hook
        self.install_delay_timeouts = True
        self.delayed: Dict[str, HealthTimer] = {}
        self.types_to_delay: Set[str] = (
            set(settings.feed_health_delay_types) if settings.feed_health_delay > 0 else set()
        )

    @property
    def delay_ms(self) -> int:
        return self.settings.feed_health_delay * MINUTE_MS

    def clear(self) -> None:
        """Cancel every pending timer. Call before replacing this manager."""

        for timer in list(self.delayed.values()):
            self._consume(timer)
        self.delayed.clear()

    def _is_health(self, event: Event) -> bool:
        return event.event.event_type is EventType.HEALTH and event.event.type in self.types_to_delay

    def _is_health_restored(self, event: Event) -> bool:
        return event.event.event_type is EventType.HEALTH_RESTORED and event.event.type in self.types_to_delay

    def _expired(self, time_difference: int) -> bool:
        return time_difference > self.delay_ms

    def _consume(self, timer: HealthTimer) -> None:
        """Retire `timer` so that it can neither fire nor be matched again."""

        timer.consumed = True
        if timer.handle is not None:
            self.scheduler.cancel(timer.handle)
            timer.handle = None
        if self.delayed.get(timer.health_id) is timer:
            del self.delayed[timer.health_id]

    def _register_delayed_health_event(self, hid: str, event: Event, historic: bool = False) -> HealthTimer:
        elapsed = self.scheduler.now_ms() - event.timestamp
        if historic:
            remaining = math.ceil(self.settings.feed_health_delay - elapsed / MINUTE_MS)
            logger.info(f"Delaying historic health event '{hid}' for {remaining} more minutes")
        else:
            logger.info(f"Delaying feed health event '{hid}' for {self.settings.feed_health_delay} minutes")

        timer = HealthTimer(health_id=hid, event=event, start_time=event.timestamp)
        existing = self.delayed.get(hid)
        if existing is not None:
            self._consume(existing)
        if existing is not None and existing.event.id != event.id:
            if self._expired(event.timestamp - existing.start_time):
                # its window closed before this one opened so it stands on its own
                if self.install_delay_timeouts:
                    self.add_event_to_feed(existing.event)
            else:
                logger.warning(
                    f"Health event '{hid}' is already delayed (event {existing.event.id}), "
                    f"replacing it with event {event.id}"
                )
                timer.replaced = existing.replaced + [existing.event]

        if self.install_delay_timeouts:
            timer.handle = self.scheduler.schedule_after(
                (self.delay_ms - elapsed) / 1000, lambda: self._on_timeout(timer)
            )
        self.delayed[hid] = timer
        return timer

    def _on_timeout(self, timer: HealthTimer) -> None:
        if timer.consumed:
            return
        timer.handle = None
        self._consume(timer)
        logger.info(
            f"Health event '{timer.health_id}' did not receive restore event within "
            f"{self.settings.feed_health_delay} minutes so sending to feed"
        )
        try:
            self.add_event_to_feed(timer.event)
        except Exception as e:
            logger.exception(f"Error sending delayed health event to feed: {e}")

    def _request_series(self, event: Event) -> None:
        series = event.event.series
        if series is not None and self.series_hook is not None:
            self.series_hook({series.id})

    def receive(self, payload: WebHookPayload) -> Optional[Event]:
        """Ingestion boundary. Never raises; failures are logged.

        Returns the stored event, or None if it could not be stored.
        """

        try:
            event = self.history.append(payload, self.scheduler.now_ms())
        except Exception as e:
            logger.exception(f"Error adding event to history: {e}")
            return None

        try:
            self._request_series(event)
            self.process_new(event)
        except Exception as e:
            logger.exception(f"Error sending event to feed: {e}")

        self.history.persist()
        return event

    def process_new(self, event: Event) -> None:
        """Publish `event` now, hold it, or drop it together with its match."""

        if self.settings.feed_health_delay <= 0:
            self.add_event_to_feed(event)
            return

        if self._is_health(event):
            self._register_delayed_health_event(health_id(event), event)
            return

        if self._is_health_restored(event):
            hid = health_id(event)
            timer = self.delayed.get(hid)
            if timer is not None and self._expired(event.timestamp - timer.start_time):
                # restore came after the window closed so both events stand
                self._consume(timer)
                if self.install_delay_timeouts:
                    self.add_event_to_feed(timer.event)
                timer = None

            if timer is not None:
                minutes = math.ceil((event.timestamp - timer.start_time) / MINUTE_MS)
                self._consume(timer)
                if self.settings.discard_resolved_health_events:
                    self.history.purge(
                        event.index, timer.event.index, *(replaced.index for replaced in timer.replaced)
                    )
                    logger.info(f"Health event '{hid}' restored after {minutes} minutes. Purging from history.")
                else:
                    logger.info(f"Health event '{hid}' restored after {minutes} minutes. Suppressing from feed.")
                return

        self.add_event_to_feed(event)

    def generate_historical(self, count: int) -> List[Event]:
        """Pick up to `count` events from history to seed the feed with.

        History is walked newest-first, so a HealthRestored is always seen
        before the Health it clears. Health events still inside their delay
        window are registered as pending instead of being returned. The
        result is newest-first and history itself is not modified.
        """

        events: List[Event] = []
        restore_events: Dict[str, Event] = {}
        newer_health: Dict[str, Event] = {}
        pending: Dict[str, HealthTimer] = {}
        now = self.scheduler.now_ms()

        for event in reversed(self.history.records):
            if len(events) >= count:
                break
            if self._is_health_restored(event):
                hid = health_id(event)
                # never seeded if its Health is not walked, though it was published live
                restore_events[hid] = event
                newer_health.pop(hid, None)
                pending.pop(hid, None)
            elif self._is_health(event):
                hid = health_id(event)
                restore_event = restore_events.pop(hid, None)
                newer = newer_health.get(hid)
                newer_health[hid] = event
                if restore_event is not None:
                    # resolved inside the window means neither was ever published
                    if self._expired(restore_event.timestamp - event.timestamp):
                        events.append(restore_event)
                        events.append(event)
                elif newer is not None and not self._expired(newer.timestamp - event.timestamp):
                    logger.debug(f"Historic health event {event.id} was replaced by {newer.id}")
                    if hid in pending:
                        pending[hid].replaced.append(event)
                elif self._expired(now - event.timestamp):
                    events.append(event)
                else:
                    pending[hid] = self._register_delayed_health_event(hid, event, historic=True)
            else:
                events.append(event)
        return events

    def add_event_to_feed(self, event: Event) -> None:
        """Immediately adds an event to the feed."""

        self.feed.publish(event)
