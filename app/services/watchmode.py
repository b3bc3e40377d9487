"""Streaming availability lookups via the Watchmode API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..models import StreamingSource

logger = logging.getLogger(__name__)

SUBSCRIPTION_SOURCE_TYPE = "sub"


class WatchmodeClient:
    """Resolve where a title can be streamed on a subscription service."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self._client = http_client
        self._api_key = settings.watchmode_api_key or ""
        self._enabled = True

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._api_key)

    def configure(self, api_key: str | None, enabled: bool) -> None:
        if api_key:
            self._api_key = api_key
        self._enabled = enabled

    async def get_streaming_sources(
        self, imdb_id: str, region: str = "US"
    ) -> list[StreamingSource]:
        """Return subscription sources for the title, one per service name."""

        if not imdb_id or not self.enabled:
            return []

        search = await self._get_json(
            "/search/",
            {"search_field": "imdb_id", "search_value": imdb_id},
        )
        if not isinstance(search, dict):
            return []
        title_results = search.get("title_results")
        if not isinstance(title_results, list) or not title_results:
            return []
        first = title_results[0]
        title_id = first.get("id") if isinstance(first, dict) else None
        if title_id is None:
            return []

        sources = await self._get_json(f"/title/{title_id}/sources/", {"regions": region})
        if not isinstance(sources, list):
            return []

        unique: dict[str, StreamingSource] = {}
        for entry in sources:
            if not isinstance(entry, dict):
                continue
            if entry.get("type") != SUBSCRIPTION_SOURCE_TYPE:
                continue
            name = str(entry.get("name") or "").strip()
            if not name or name in unique:
                continue
            try:
                unique[name] = StreamingSource.model_validate(
                    {"region": region, **entry, "name": name}
                )
            except ValueError as exc:
                logger.debug("Skipping malformed Watchmode source %s: %s", name, exc)
        return list(unique.values())

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any | None:
        try:
            response = await self._client.get(
                path, params={**params, "apiKey": self._api_key}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Watchmode request %s failed: %s", path, exc)
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("Watchmode request %s returned malformed JSON", path)
            return None
