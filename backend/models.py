"""
Pydantic models used across the backend.

Two shapes live here: the webhook payload Sonarr posts to us
(`WebHookPayload`) and the history record we wrap it in (`Event`).

Guidelines:
- Attributes are snake_case, wire names are Sonarr's camelCase. Always
  dump with `by_alias=True` so the history file keeps the wire names.
- Unknown payload keys are preserved (`extra="allow"`); Sonarr adds fields
  between versions and the history file should not lose them.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    """Every webhook `eventType` the feed knows how to title and render."""

    APPLICATION_UPDATE = "ApplicationUpdate"
    DOWNLOAD = "Download"
    EPISODE_FILE_DELETE = "EpisodeFileDelete"
    GRAB = "Grab"
    HEALTH = "Health"
    HEALTH_RESTORED = "HealthRestored"
    SERIES_ADD = "SeriesAdd"
    SERIES_DELETE = "SeriesDelete"
    TEST = "Test"


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class WebHookSeries(WireModel):
    id: int
    title: Optional[str] = None
    title_slug: Optional[str] = None
    path: Optional[str] = None
    tvdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    year: Optional[int] = None


class WebHookEpisode(WireModel):
    id: Optional[int] = None
    episode_number: Optional[int] = None
    season_number: Optional[int] = None
    title: Optional[str] = None
    air_date: Optional[str] = None


class WebHookEpisodeFile(WireModel):
    id: Optional[int] = None
    relative_path: Optional[str] = None
    quality: Optional[str] = None
    size: Optional[int] = None


class WebHookRelease(WireModel):
    quality: Optional[str] = None
    release_title: Optional[str] = None
    indexer: Optional[str] = None
    size: Optional[int] = None


class WebHookPayload(WireModel):
    """Body of a Sonarr v3 webhook call.

    Only `eventType` is required. Health-kind payloads carry `type`,
    `level` and `message`, which together identify the problem.
    """

    event_type: EventType
    instance_name: Optional[str] = None
    application_url: Optional[str] = None
    series: Optional[WebHookSeries] = None
    episodes: List[WebHookEpisode] = Field(default_factory=list)
    episode_file: Optional[WebHookEpisodeFile] = None
    release: Optional[WebHookRelease] = None
    is_upgrade: Optional[bool] = None
    download_client: Optional[str] = None
    download_client_type: Optional[str] = None
    download_id: Optional[str] = None
    level: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None
    wiki_url: Optional[str] = None
    delete_reason: Optional[str] = None
    previous_version: Optional[str] = None
    new_version: Optional[str] = None


class Event(WireModel):
    """One received webhook as stored in history.

    `index` mirrors the record's position in history and is rewritten
    whenever records below it are purged.
    """

    id: str
    timestamp: int
    index: int
    event: WebHookPayload


def health_id(event: Event) -> str:
    """Identity shared by a Health event and the HealthRestored clearing it."""

    payload = event.event
    return f"{payload.type}-{payload.level}-{payload.message}"
