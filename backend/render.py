"""
Feed item titles and HTML bodies for each webhook event type.

Both `event_title` and `PARTIALS` cover every `EventType`; adding a member
to the enum without a title and a partial is a bug (see
`tests/test_feed.py`).

Series data fetched from Sonarr is optional. When it is missing the body
falls back to whatever the webhook payload carried.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from html import escape
from typing import Any, Callable, Dict, List, Mapping, Optional

from models import Event, EventType, WebHookEpisode, WebHookPayload


@dataclass
class RenderContext:
    instance_name: str = "Sonarr"
    application_url: str = "/"
    sonarr_base_url: str = ""
    series_data: Mapping[int, Dict[str, Any]] = field(default_factory=dict)

    def series_title(self, payload: WebHookPayload) -> Optional[str]:
        if payload.series is None:
            return None
        cached = self.series_data.get(payload.series.id)
        if cached and cached.get("title"):
            return cached["title"]
        return payload.series.title

    def banner_url(self, payload: WebHookPayload) -> Optional[str]:
        """Banner for the series, only once its data has been fetched."""

        if payload.series is None or payload.event_type in (EventType.SERIES_DELETE, EventType.TEST):
            return None
        cached = self.series_data.get(payload.series.id)
        if not cached:
            return None
        for image in cached.get("images", []):
            if image.get("coverType") == "banner" and image.get("remoteUrl"):
                return image["remoteUrl"]
        return None


def _first_episode(payload: WebHookPayload) -> WebHookEpisode:
    return payload.episodes[0] if payload.episodes else WebHookEpisode()


def _episode_label(payload: WebHookPayload, prefix: str = "") -> str:
    episode = _first_episode(payload)
    series = payload.series.title if payload.series else None
    return f"{series} {prefix}S{episode.season_number} E{episode.episode_number} - {episode.title}"


def event_title(event: Event) -> str:
    payload = event.event
    kind = payload.event_type
    if kind is EventType.APPLICATION_UPDATE:
        return f"Application update - {payload.message}"
    elif kind is EventType.SERIES_ADD:
        return f"New series added - {payload.series.title if payload.series else None}"
    elif kind is EventType.SERIES_DELETE:
        return f"Series deleted - {payload.series.title if payload.series else None}"
    elif kind is EventType.DOWNLOAD:
        return f"Downloaded {_episode_label(payload)}{' - upgrade' if payload.is_upgrade else ''}"
    elif kind is EventType.EPISODE_FILE_DELETE:
        return f"Deleted {_episode_label(payload, 'Episode ')} - {payload.delete_reason}"
    elif kind is EventType.GRAB:
        return f"Grabbed {_episode_label(payload)}"
    elif kind is EventType.HEALTH:
        return "Health"
    elif kind is EventType.HEALTH_RESTORED:
        return "Health Restored"
    elif kind is EventType.TEST:
        return "Test"
    raise ValueError(f"No title for event type {kind!r}")


def _row(label: str, value: Any) -> str:
    if value is None or value == "":
        return ""
    return f"<tr><th>{escape(label)}</th><td>{escape(str(value))}</td></tr>"


def _table(rows: List[str]) -> str:
    body = "".join(r for r in rows if r)
    return f"<table>{body}</table>" if body else ""


def _human_size(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    size = float(value)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"


def _episodes(payload: WebHookPayload) -> List[str]:
    return [
        _row(f"S{ep.season_number} E{ep.episode_number}", ep.title)
        for ep in payload.episodes
    ]


def _application_update(payload: WebHookPayload, ctx: RenderContext) -> str:
    return _table([
        _row("Message", payload.message),
        _row("Previous version", payload.previous_version),
        _row("New version", payload.new_version),
    ])


def _download(payload: WebHookPayload, ctx: RenderContext) -> str:
    episode_file = payload.episode_file
    return _table([
        _row("Series", ctx.series_title(payload)),
        *_episodes(payload),
        _row("Upgrade", "yes" if payload.is_upgrade else None),
        _row("Quality", episode_file.quality if episode_file else None),
        _row("File", episode_file.relative_path if episode_file else None),
        _row("Size", _human_size(episode_file.size) if episode_file else None),
        _row("Download client", payload.download_client),
    ])


def _episode_file_delete(payload: WebHookPayload, ctx: RenderContext) -> str:
    episode_file = payload.episode_file
    return _table([
        _row("Series", ctx.series_title(payload)),
        *_episodes(payload),
        _row("Reason", payload.delete_reason),
        _row("File", episode_file.relative_path if episode_file else None),
    ])


def _grab(payload: WebHookPayload, ctx: RenderContext) -> str:
    release = payload.release
    return _table([
        _row("Series", ctx.series_title(payload)),
        *_episodes(payload),
        _row("Release", release.release_title if release else None),
        _row("Quality", release.quality if release else None),
        _row("Indexer", release.indexer if release else None),
        _row("Size", _human_size(release.size) if release else None),
        _row("Download client", payload.download_client),
    ])


def _health(payload: WebHookPayload, ctx: RenderContext) -> str:
    wiki = ""
    if payload.wiki_url:
        wiki = f'<p><a href="{escape(payload.wiki_url, quote=True)}">More information</a></p>'
    return _table([
        _row("Level", payload.level),
        _row("Type", payload.type),
        _row("Message", payload.message),
    ]) + wiki


def _health_restored(payload: WebHookPayload, ctx: RenderContext) -> str:
    return _table([
        _row("Type", payload.type),
        _row("Message", payload.message),
    ])


def _series(payload: WebHookPayload, ctx: RenderContext) -> str:
    series = payload.series
    return _table([
        _row("Series", ctx.series_title(payload)),
        _row("Year", series.year if series else None),
        _row("Path", series.path if series else None),
        _row("Reason", payload.delete_reason),
    ])


def _test(payload: WebHookPayload, ctx: RenderContext) -> str:
    return f"<p>Test event from {escape(ctx.instance_name)}</p>"


PARTIALS: Dict[EventType, Callable[[WebHookPayload, RenderContext], str]] = {
    EventType.APPLICATION_UPDATE: _application_update,
    EventType.DOWNLOAD: _download,
    EventType.EPISODE_FILE_DELETE: _episode_file_delete,
    EventType.GRAB: _grab,
    EventType.HEALTH: _health,
    EventType.HEALTH_RESTORED: _health_restored,
    EventType.SERIES_ADD: _series,
    EventType.SERIES_DELETE: _series,
    EventType.TEST: _test,
}


def event_content(event: Event, ctx: RenderContext) -> str:
    payload = event.event
    when = datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc)
    parts = [f"<h3>{escape(ctx.instance_name)}: {escape(event_title(event))}</h3>"]
    banner = ctx.banner_url(payload)
    if banner:
        parts.append(f'<img src="{escape(banner, quote=True)}" alt="banner"/>')
    parts.append(PARTIALS[payload.event_type](payload, ctx))
    parts.append(f"<p><small>{when.strftime('%Y-%m-%d %H:%M:%S UTC')}</small></p>")
    return "".join(parts)
