"""Shared builders for events, settings and a wired-up event manager."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import pytest

from feed import FeedPublisher
from models import Event, WebHookPayload
from render import RenderContext
from repo_events import HistoryRepo
from service_events import EventManager
from settings import Settings
from timers import VirtualScheduler

START_MS = 1_700_000_000_000
MINUTE_MS = 60_000


def payload(event_type: str, **fields: Any) -> WebHookPayload:
    return WebHookPayload.model_validate({"eventType": event_type, **fields})


def health(message: str = "disk full", type_: str = "MountCheck", level: str = "warning") -> WebHookPayload:
    return payload("Health", type=type_, level=level, message=message)


def restored(message: str = "disk full", type_: str = "MountCheck", level: str = "warning") -> WebHookPayload:
    return payload("HealthRestored", type=type_, level=level, message=message)


def ping(n: int = 0) -> WebHookPayload:
    return payload("Test", instanceName=f"test-{n}")


def download(series_id: int = 7, title: str = "Andor") -> WebHookPayload:
    return payload(
        "Download",
        series={"id": series_id, "title": title},
        episodes=[{"seasonNumber": 1, "episodeNumber": 3, "title": "Reckoning"}],
        isUpgrade=True,
    )


def make_settings(tmp_path, **overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "history_file": str(tmp_path / "history.json"),
        "application_url": "http://feed.local/",
        "sonarr_base_url": "",
        "sonarr_api_key": "",
        "feed_health_delay": 10,
        "feed_health_delay_types": ["MountCheck"],
        "discard_resolved_health_events": False,
        "feed_low_water_mark": 20,
        "feed_high_water_mark": 50,
    }
    values.update(overrides)
    return Settings(**values)


@dataclass
class Harness:
    settings: Settings
    history: HistoryRepo
    feed: FeedPublisher
    scheduler: VirtualScheduler
    manager: EventManager

    def add_record(self, p: WebHookPayload, minutes: float) -> Event:
        """Put a record straight into history at START + `minutes`."""

        return self.history.append(p, START_MS + int(minutes * MINUTE_MS))

    def titles(self):
        return [item.title for item in self.feed.items]

    def feed_ids(self):
        return [item.id for item in self.feed.items]


@pytest.fixture
def make_harness(tmp_path):
    def build(now_minutes: float = 0, series_hook: Optional[Any] = None, **overrides: Any) -> Harness:
        settings = make_settings(tmp_path, **overrides)
        history = HistoryRepo(settings.history_file)
        feed = FeedPublisher(settings, RenderContext(application_url=settings.normalized_application_url))
        scheduler = VirtualScheduler(START_MS + int(now_minutes * MINUTE_MS))
        manager = EventManager(settings, history, feed, scheduler, series_hook=series_hook)
        return Harness(settings, history, feed, scheduler, manager)

    return build
