"""
Centralized runtime configuration for the feed service.

This module uses `python-dotenv` to read a local `.env` file during
development and exposes a Pydantic `Settings` model named `settings`.

Why this exists:
- Keeps configuration in one place so other modules receive a `Settings`.
- Provides typed fields with defaults and simple validation.

Environment variables used:
- `HISTORY_FILE` — JSON document holding every received event.
- `FEED_TITLE`, `APPLICATION_URL`, `URL_BASE` — feed channel metadata/links.
- `SONARR_BASE_URL`, `SONARR_API_KEY` — optional API access for series data.
- `FEED_HEALTH_DELAY` — minutes to hold health events (0 disables).
- `FEED_HEALTH_DELAY_TYPES` — comma separated health `type` values to hold.
- `DISCARD_RESOLVED_HEALTH_EVENTS` — purge resolved pairs from history.
- `FEED_LOW_WATER_MARK`, `FEED_HIGH_WATER_MARK` — feed item bounds.
- `FEED_RSS`, `FEED_ATOM`, `FEED_JSON` — which feed formats are served.
- `FEED_SEED_COUNT` — how many historic events seed the feed on startup.
- `LOG_LEVEL` — standard logging level name.

Example `.env`:
HISTORY_FILE=./history.json
FEED_HEALTH_DELAY=10
FEED_HEALTH_DELAY_TYPES=IndexerStatusCheck,DownloadClientStatusCheck

"""

from typing import List
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [s.strip() for s in raw.split(",") if s.strip()]


class Settings(BaseModel):
    """Typed settings container.

    Components take a `Settings` instance in their constructor rather than
    importing the module-level `settings`, so tests build their own.
    """

    history_file: str = os.getenv("HISTORY_FILE", "./history.json")
    feed_title: str = os.getenv("FEED_TITLE", "Sonarr to RSS")
    application_url: str = os.getenv("APPLICATION_URL", "")
    url_base: str = os.getenv("URL_BASE", "")
    sonarr_base_url: str = os.getenv("SONARR_BASE_URL", "")
    sonarr_api_key: str = os.getenv("SONARR_API_KEY", "")

    feed_health_delay: int = Field(default=int(os.getenv("FEED_HEALTH_DELAY", "0")), ge=0)
    feed_health_delay_types: List[str] = Field(
        default_factory=lambda: _env_list("FEED_HEALTH_DELAY_TYPES")
    )
    discard_resolved_health_events: bool = _env_bool("DISCARD_RESOLVED_HEALTH_EVENTS", "false")

    feed_low_water_mark: int = Field(default=int(os.getenv("FEED_LOW_WATER_MARK", "20")), ge=1)
    feed_high_water_mark: int = Field(default=int(os.getenv("FEED_HIGH_WATER_MARK", "50")), ge=1)
    feed_rss: bool = _env_bool("FEED_RSS", "true")
    feed_atom: bool = _env_bool("FEED_ATOM", "true")
    feed_json: bool = _env_bool("FEED_JSON", "false")
    feed_seed_count: int = Field(default=int(os.getenv("FEED_SEED_COUNT", "20")), ge=0)

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @model_validator(mode="after")
    def _check_water_marks(self) -> "Settings":
        if self.feed_low_water_mark > self.feed_high_water_mark:
            raise ValueError(
                f"feed_low_water_mark ({self.feed_low_water_mark}) must not exceed "
                f"feed_high_water_mark ({self.feed_high_water_mark})"
            )
        return self

    @property
    def normalized_url_base(self) -> str:
        """URL base, always starting and ending with `/`."""

        base = self.url_base
        if not base:
            return "/"
        if base != "/":
            if not base.startswith("/"):
                base = "/" + base
            if not base.endswith("/"):
                base = base + "/"
        return base

    @property
    def normalized_application_url(self) -> str:
        """Externally visible URL, always ending with `/`."""

        url = self.application_url
        if not url:
            return self.normalized_url_base
        if not url.endswith("/"):
            url = url + "/"
        return url

    def resolve_application_url(self, path: str) -> str:
        return self.normalized_application_url + (path[1:] if path.startswith("/") else path)


settings = Settings()
