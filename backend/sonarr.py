"""
Minimal Sonarr v3 API client.

Only what the feed needs: the host config (for the instance name) and
series resources (titles and banner images for feed item bodies).
Everything here is best-effort; callers treat failures as "no data".
"""

import asyncio
import logging
from typing import Any, Dict, MutableMapping, Optional, Set

import httpx

logger = logging.getLogger("sonarr")


class SonarrClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported protocol in Sonarr URL {base_url!r}")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v3/",
            headers={"X-Api-Key": api_key, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def get_json(self, path: str) -> Any:
        response = await self._client.get(path.lstrip("/"))
        response.raise_for_status()
        return response.json()

    async def host_config(self) -> Dict[str, Any]:
        return await self.get_json("config/host")

    async def series(self, series_id: int) -> Dict[str, Any]:
        return await self.get_json(f"series/{series_id}?includeSeasonImages=true")

    async def aclose(self) -> None:
        await self._client.aclose()


class SeriesResolver:
    """Fills `cache` with series resources, fetching each id at most once at a time."""

    def __init__(self, client: SonarrClient, cache: MutableMapping[int, Dict[str, Any]]):
        self.client = client
        self.cache = cache
        self._in_flight: Set[int] = set()

    def unseen(self, series_ids: Set[int]) -> Set[int]:
        return {sid for sid in series_ids if sid not in self.cache and sid not in self._in_flight}

    async def _fetch(self, series_id: int) -> None:
        try:
            self.cache[series_id] = await self.client.series(series_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.info(f"Error retrieving series data for {series_id}: {e}")
        finally:
            self._in_flight.discard(series_id)

    async def ensure_series(self, series_ids: Set[int]) -> None:
        wanted = self.unseen(series_ids)
        if not wanted:
            return
        self._in_flight.update(wanted)
        await asyncio.gather(*(self._fetch(sid) for sid in wanted))
